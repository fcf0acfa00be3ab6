"""Common error types and validation utility functions
"""


class IndexerError(Exception):
    """Base class for errors raised by the indexer."""


class OperatorError(IndexerError):
    """
    An operator request that cannot be honored,
    such as a resync with no markets loaded.
    Raised before any state is changed.
    """


class ChainReadError(IndexerError):
    """A required read against the chain did not return a value."""


def check_for_missing_env_vars(env_vars: dict):
    """Checks whether any required environment values are undefined.

    :param env_vars: The dictionary of environment variables.
    """
    # Check for missing environment variables since these are unrecoverable.
    missing_keys = [k for k, v in env_vars.items() if v is None]
    if missing_keys:
        missing_keys_str = ", ".join(missing_keys)
        raise EnvironmentError(
            f"Missing required environment variables: {missing_keys_str}"
        )
