#!/usr/bin/env python3
"""
Setup script for the lanserve package.
Install with: pip install -e .
"""

from setuptools import setup, find_packages

setup(
    name="lanserve",
    version="0.1.0",
    description="Share a directory over HTTP(S) on the local network",
    packages=find_packages(include=["lanserve", "lanserve.*"]),
    python_requires=">=3.8",
    install_requires=[
        "pyyaml",
        "psutil",
        "cryptography>=3.1",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "lanserve=lanserve.main:main_cli",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
