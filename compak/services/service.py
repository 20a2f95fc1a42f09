# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Pak Service - Modular Composition

Composes focused modules into the single service the CLI talks to.
Each module does one thing well.
"""

import logging
import tempfile
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

from compak.core.config import Config, get_config
from compak.core.errors import AlreadyInstalledError, ValidationError
from compak.models.package_models import InstalledPackage, Package, PackageStatus, SearchResult
from compak.services.compose import ComposeEngine, ContainerSummary, LogConsumer
from compak.services.index import IndexClient, split_versioned_name
from compak.services.oci import OCIRegistryClient, is_registry_reference
from compak.services.operations import DeploymentManager
from compak.services.parameters import validate_overrides
from compak.services.state import StateStore, validate_package_name
from compak.services.upgrade import UpgradeResult, UpgradeService, UpgradeSummary

logger = logging.getLogger(__name__)


class PakService:
    """
    Unified package service (modular composition).

    Composes:
    - IndexClient: catalog search and manifest resolution
    - OCIRegistryClient: publish and pull artifacts
    - StateStore: installed.json
    - DeploymentManager: deploy/stop/status via the compose engine
    - UpgradeService: upgrades with rollback
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        compose: Optional[ComposeEngine] = None,
        index: Optional[IndexClient] = None,
        registry: Optional[OCIRegistryClient] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize Pak Service.

        Args:
            config: Application configuration (default: global config)
            compose: Compose engine adapter (default: detected CLI)
            index: Catalog client
            registry: OCI registry client
            http_transport: Optional transport shared by the HTTP clients
            clock: Clock for the catalog cache
        """
        self.config = config or get_config()

        self.state = StateStore(self.config.state_dir, self.config.state_file)
        self.compose = compose or ComposeEngine(self.config.compose_command)
        self.index = index or IndexClient(self.config, clock=clock)
        self.registry = registry or OCIRegistryClient(self.config, http_transport=http_transport)
        self.manager = DeploymentManager(self.config, self.state, self.compose, http_transport=http_transport)
        self.upgrader = UpgradeService(self.state, self.index, self.manager)

    # -- catalog --

    def search(self, query: str = "", limit: int = 20) -> List[SearchResult]:
        return self.index.search(query, limit)

    def update_index(self):
        self.index.update()

    # -- install / uninstall --

    def _install(
        self,
        package: Package,
        overrides: Optional[Dict[str, str]],
        source_path: Optional[Path] = None
    ) -> InstalledPackage:
        validate_package_name(package.name)

        if self.state.exists(package.name):
            existing = self.state.get(package.name)
            if existing.version != package.version:
                raise AlreadyInstalledError(package.name, existing.version, package.version)
            if existing.status != PackageStatus.FAILED:
                overrides = overrides or {}
                # deployed values already satisfy required parameters
                validate_overrides(package, {**existing.values, **overrides})
                ignored = sorted(k for k, v in overrides.items() if existing.values.get(k) != v)
                if ignored:
                    logger.warning(
                        f"Package {package.ref} is already installed; ignoring new values for "
                        f"{', '.join(ignored)} (uninstall and install again to apply them)"
                    )
                else:
                    logger.info(f"Package {package.ref} is already installed")
                return existing
            logger.info(f"Package {package.ref} is marked failed, redeploying")

        validate_overrides(package, overrides)

        logger.info(f"Installing package: {package.ref}")
        return self.manager.deploy(package, overrides, source_path=source_path)

    def install(
        self,
        target: Optional[str] = None,
        version: Optional[str] = None,
        path: Optional[Path] = None,
        overrides: Optional[Dict[str, str]] = None
    ) -> InstalledPackage:
        """
        Install a package.

        Args:
            target: Catalog name (``name`` or ``name@version``) or registry reference
            version: Catalog version to install
            path: Local package directory (takes precedence over target)
            overrides: Parameter values (``--set``)

        Returns:
            The installation record; the existing one when the same version is installed
        """
        if path is not None:
            if version:
                raise ValidationError("--version only applies to catalog installs", field="version")
            path = Path(path).absolute()
            if not path.is_dir():
                raise ValidationError(f"local path does not exist: {path}", field="path")
            package = self.manager.load_package_from_dir(path)
            return self._install(package, overrides, source_path=path)

        if not target:
            raise ValidationError("package name required", field="name")

        if is_registry_reference(target):
            if version:
                raise ValidationError("--version only applies to catalog installs", field="version")
            self.config.tmp_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(dir=self.config.tmp_dir, prefix="pull-") as tmp:
                logger.info(f"Pulling package from {target}")
                self.registry.pull(target, Path(tmp))
                package = self.manager.load_package_from_dir(Path(tmp))
                return self._install(package, overrides, source_path=Path(tmp))

        name, pinned = split_versioned_name(target)
        if pinned and version and pinned != version:
            raise ValidationError(f"conflicting versions: {target} and --version {version}", field="version")
        version = version or pinned

        lookup = f"{name}@{version}" if version else name
        package = Package.from_yaml(self.index.resolve(lookup), source=lookup)
        return self._install(package, overrides)

    def uninstall(self, name: str) -> InstalledPackage:
        return self.manager.stop(name)

    # -- upgrades --

    def upgrade(self, name: str, target_version: Optional[str] = None) -> UpgradeResult:
        return self.upgrader.upgrade(name, target_version)

    def upgrade_all(self, target_version: Optional[str] = None) -> UpgradeSummary:
        return self.upgrader.upgrade_all(target_version)

    # -- inspection --

    def status(self, name: str) -> List[ContainerSummary]:
        return self.manager.status(name)

    def logs(self, name: str, consumer: LogConsumer, follow: bool = False):
        self.manager.logs(name, consumer, follow=follow)

    def list_installed(self) -> List[InstalledPackage]:
        return self.state.list()

    # -- publishing --

    def publish(self, path: Path, reference: str) -> str:
        """
        Push a local package directory to a registry.

        The manifest is parsed first so broken packages are never published.

        Returns:
            Manifest digest
        """
        path = Path(path).absolute()
        package = self.manager.load_package_from_dir(path)
        validate_package_name(package.name)
        logger.info(f"Publishing package '{package.name}' version {package.version} to {reference}")
        return self.registry.push(path, reference)
