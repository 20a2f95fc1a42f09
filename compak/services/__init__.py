# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package lifecycle services.

Modular system, each module does one thing well:
- index: git-backed catalog
- oci: OCI registry artifacts
- state: installed.json
- operations: deploy/stop via the compose engine
- upgrade: version comparison and rollback
- service: composition used by the CLI
"""

from .state import StateStore
from .index import IndexClient
from .oci import OCIRegistryClient
from .compose import ComposeEngine
from .operations import DeploymentManager
from .upgrade import UpgradeService
from .service import PakService

__all__ = [
    "StateStore",
    "IndexClient",
    "OCIRegistryClient",
    "ComposeEngine",
    "DeploymentManager",
    "UpgradeService",
    "PakService",
]
