# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Deployment Manager

Single responsibility: turn a package plus values into a running compose
project, and tear it down again.

Per package:
    absent -> installed -> (upgrade: updating) -> installed | failed
"""

import os
import shutil
import logging
from pathlib import Path
from typing import List, Mapping, Optional

import httpx
import yaml

from compak.core.config import Config
from compak.core.errors import ExternalToolError, NetworkError, NotFoundError, ValidationError
from compak.core.logging import log_event
from compak.models.package_models import InstalledPackage, Package, PackageStatus
from compak.services.compose import COMPOSE_FILE, ComposeEngine, ContainerSummary, LogConsumer
from compak.services.parameters import merge_values, validate_parameters, write_env_file
from compak.services.state import StateStore, validate_package_name

logger = logging.getLogger(__name__)

PACKAGE_YAML = "package.yaml"
PACKAGE_JSON = "package.json"

DEFAULT_COMPOSE = """version: '3.8'

services:
  app:
    image: nginx:alpine
    ports:
      - "${PORT:-8080}:80"
    environment:
      - SERVICE_NAME=${SERVICE_NAME:-compak}
"""


def validate_source_path(path: Path) -> None:
    """Reject paths that traverse upwards after normalisation."""
    if ".." in Path(os.path.normpath(path)).parts:
        raise ValidationError(f"invalid source path {path}: contains directory traversal", field="path")


def _write_private(path: Path, data: bytes):
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


class DeploymentManager:
    """Deploys packages into <state_dir>/packages/<name> and runs them via compose"""

    def __init__(
        self,
        config: Config,
        state: StateStore,
        compose: ComposeEngine,
        http_transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize deployment manager.

        Args:
            config: Application configuration
            state: Installed-package state store
            compose: Compose engine adapter
            http_transport: Optional transport for compose file downloads
        """
        self.packages_dir = config.packages_dir
        self.project_prefix = config.project_prefix
        self.http_timeout = config.http_timeout
        self.state = state
        self.compose = compose
        self.http_transport = http_transport

    def project_name(self, name: str) -> str:
        return f"{self.project_prefix}-{name}"

    def package_dir(self, name: str) -> Path:
        return self.packages_dir / name

    # -- compose file materialisation --

    def _download_compose_file(self, url: str, dest: Path):
        logger.info(f"Downloading compose file from {url}...")
        try:
            with httpx.Client(
                timeout=self.http_timeout,
                follow_redirects=True,
                transport=self.http_transport
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            raise NetworkError(f"failed to download from {url}: {e}", url=url) from e

        if response.status_code != 200:
            raise NetworkError(f"failed to download from {url}: status {response.status_code}", url=url)

        try:
            content = yaml.safe_load(response.content)
        except yaml.YAMLError as e:
            raise ValidationError(f"downloaded file is not valid YAML: {e}", field="source") from e
        if not isinstance(content, dict):
            raise ValidationError("downloaded file is not a YAML mapping", field="source")

        _write_private(dest, response.content)

    def _materialize(self, package_dir: Path, package: Package, source_path: Optional[Path]):
        """Put docker-compose.yaml in place: copy, download, or default, in that order."""
        compose_path = package_dir / COMPOSE_FILE

        if source_path:
            try:
                shutil.copytree(source_path, package_dir, dirs_exist_ok=True)
            except (OSError, shutil.Error) as e:
                raise ValidationError(f"failed to copy package files: {e}", field="path") from e
        elif package.source:
            self._download_compose_file(package.source, compose_path)
        else:
            _write_private(compose_path, DEFAULT_COMPOSE.encode())

    # -- lifecycle --

    def deploy(
        self,
        package: Package,
        values: Optional[Mapping[str, str]] = None,
        source_path: Optional[Path] = None
    ) -> InstalledPackage:
        """
        Deploy a package and record it as installed.

        The record is only written once ``up`` succeeded. On failure no record
        is written and the working directory is left for inspection.

        Args:
            package: Package manifest
            values: Caller overrides (defaults and presets are merged underneath)
            source_path: Local directory to copy package files from

        Returns:
            The persisted installation record
        """
        validate_package_name(package.name)
        if source_path is not None:
            source_path = Path(source_path)
            validate_source_path(source_path)

        merged = merge_values(package, values)
        validate_parameters(package.parameters, merged)

        package_dir = self.package_dir(package.name)
        package_dir.mkdir(parents=True, exist_ok=True, mode=0o750)

        self._materialize(package_dir, package, source_path)
        write_env_file(package_dir, merged)

        project = self.compose.load_project(package_dir, self.project_name(package.name))

        logger.info(f"Deploying {package.name}...")
        try:
            self.compose.pull(project)
        except ExternalToolError as e:
            logger.warning(f"Failed to pull images: {e}")

        try:
            self.compose.up(project, detach=True)
        except ExternalToolError as e:
            raise ExternalToolError(
                f"failed to start services: {e.message}",
                command=e.command,
                stderr=e.stderr
            ) from e

        record = InstalledPackage(package=package, values=merged, status=PackageStatus.INSTALLED)
        self.state.save(record)
        log_event(logger, f"Successfully installed {package.ref}", package=package.name, version=package.version)
        return record

    def stop(self, name: str, keep_record: bool = False) -> InstalledPackage:
        """
        Bring a package down and remove its working directory.

        Args:
            name: Package name
            keep_record: Leave the state record in place (used by upgrade)

        Returns:
            The record as it was before stopping
        """
        validate_package_name(name)
        record = self.state.get(name)

        package_dir = self.package_dir(name)
        if not package_dir.exists():
            logger.warning("Package directory not found, cleaning up metadata only")
        else:
            logger.info(f"Stopping {name}...")
            try:
                self.compose.down(self.project_name(name), working_dir=package_dir)
            except ExternalToolError as e:
                raise ExternalToolError(
                    f"failed to stop services: {e.message}",
                    command=e.command,
                    stderr=e.stderr
                ) from e

            logger.info(f"Cleaning up {name}...")
            try:
                shutil.rmtree(package_dir)
            except OSError as e:
                logger.warning(f"Failed to remove package directory: {e}")

        if not keep_record:
            self.state.delete(name)
            log_event(logger, f"Successfully uninstalled {record.package.ref}", package=name, version=record.version)
        return record

    def _require_deployment(self, name: str) -> Path:
        validate_package_name(name)
        self.state.get(name)
        package_dir = self.package_dir(name)
        if not package_dir.is_dir():
            raise NotFoundError("Package directory", str(package_dir), message=f"package {name} not found")
        return package_dir

    def status(self, name: str) -> List[ContainerSummary]:
        """Containers of the package's compose project, as reported by ps."""
        package_dir = self._require_deployment(name)
        return self.compose.ps(self.project_name(name), working_dir=package_dir)

    def logs(self, name: str, consumer: LogConsumer, follow: bool = False):
        package_dir = self._require_deployment(name)
        self.compose.logs(self.project_name(name), consumer, follow=follow, working_dir=package_dir)

    def load_package_from_dir(self, path: Path) -> Package:
        """
        Read the manifest of a local package directory.

        ``package.yaml`` wins over ``package.json``.

        Raises:
            NotFoundError: if neither manifest exists
        """
        path = Path(path)
        validate_source_path(path)

        loaders = (
            (PACKAGE_YAML, Package.from_yaml),
            (PACKAGE_JSON, Package.from_json),
        )
        for filename, loader in loaders:
            manifest = path / filename
            if manifest.is_file():
                return loader(manifest.read_bytes(), source=str(manifest))

        raise NotFoundError(
            "Package manifest",
            str(path),
            message=f"package.yaml or package.json not found in {path}"
        )
