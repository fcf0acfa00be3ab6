"""
A ledger indexer for a collateralized lending protocol
"""

from setuptools import find_packages, setup

with open("README.md", encoding="utf-8") as f:
    long_description = f.read()

with open("requirements.txt", encoding="utf-8") as f:
    requirements = [
        line for line in f.read().splitlines() if line and not line.startswith("#")
    ]

setup(
    name="lendcore",
    version="0.1.0",
    description="A ledger indexer for a collateralized lending protocol",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(),
    package_data={
        "": ["../requirements.txt", "abi/*.json"],
    },
    install_requires=requirements,
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["lendcore=lendcore.cli:main"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
