# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Data models for compak."""

from compak.models.package_models import (
    Param,
    ParamType,
    Package,
    PackageStatus,
    InstalledPackage,
    IndexEntry,
    SearchResult,
)

__all__ = [
    "Param",
    "ParamType",
    "Package",
    "PackageStatus",
    "InstalledPackage",
    "IndexEntry",
    "SearchResult",
]
