# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for compak - a package manager for Docker Compose applications
"""

from setuptools import setup, find_packages

setup(
    name="compak",
    version="0.4.0",
    description="Package manager for multi-container Compose applications (catalog, OCI registry, lifecycle)",
    author="adcl.io",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.6.0",
        "httpx>=0.27.0",
        "PyYAML>=6.0",
        "packaging>=23.0",
        "python-dotenv>=1.0.0",
        "GitPython>=3.1.40",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "compak=compak.cli:main",
        ],
    },
)
