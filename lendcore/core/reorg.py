"""
Reorg detection.

A pure decision function: the caller looks up the stored hash
and performs the rollback.
"""

from typing import Optional


def detect_reorg(
    height: int,
    parent_hash: str,
    stored_parent_hash: Optional[str],
    reorg_buffer: int,
    deployment_block: int,
) -> Optional[int]:
    """
    Compare a block's parent hash with the hash recorded for the previous height.

    :param height: The candidate block height.
    :param parent_hash: The parent hash reported by the ledger for the block.
    :param stored_parent_hash: The hash recorded for height - 1,
        or None if that height was never processed or has been pruned.
    :param reorg_buffer: The rollback depth.
    :param deployment_block: The replay floor.
    :return: The rollback target height if a reorg occurred, None otherwise.
    """
    if height - 1 < deployment_block:
        return None
    if stored_parent_hash is None:
        return None
    if stored_parent_hash.lower() == parent_hash.lower():
        return None
    return max(height - 1 - reorg_buffer, deployment_block)
