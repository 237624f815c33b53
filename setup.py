#!/usr/bin/env python3
"""Setup script for batch_runner package.
"""

from setuptools import find_packages, setup

setup(
    name="batch_runner",
    version="1.0.0",
    description="Concurrent batch execution with ordered results and a shared deadline",
    author="Batch Runner Team",
    packages=find_packages(include=["batch_runner*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "hypothesis>=6.0.0",
            "black>=23.0.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "types-PyYAML>=6.0.0",
        ],
    },
)
