# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
compak - package manager for multi-container Compose applications.

Packages ("paks") are a manifest plus a docker-compose.yaml, installed from a
git-backed catalog, an OCI registry, or a local directory.
"""

__version__ = "0.4.0"
