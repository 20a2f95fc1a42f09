# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Upgrades

Single responsibility: move an installed package to another catalog
version, rolling back to the previous version when the new one fails.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from packaging import version

from compak.core.errors import (
    CompakError,
    UpgradeError,
    UpgradeNotNeededError,
    ValidationError,
)
from compak.core.logging import log_event
from compak.models.package_models import LATEST, InstalledPackage, Package, PackageStatus
from compak.services.index import IndexClient
from compak.services.operations import DeploymentManager
from compak.services.state import StateStore, validate_package_name

logger = logging.getLogger(__name__)


def _parse(value: str) -> Optional[version.Version]:
    try:
        return version.parse(value)
    except version.InvalidVersion:
        return None


def compare_versions(installed: str, candidate: str) -> Tuple[bool, str]:
    """
    Decide whether ``candidate`` should replace ``installed``.

    Returns:
        (should_upgrade, reason) where reason completes "Package X is already ..."
    """
    if installed == candidate:
        return False, "up to date"

    if candidate == LATEST:
        return True, ""

    installed_ver = _parse(installed)
    candidate_ver = _parse(candidate)
    if installed_ver is None or candidate_ver is None:
        return True, ""

    if candidate_ver > installed_ver:
        return True, ""
    if candidate_ver < installed_ver:
        return False, f"would downgrade ({installed} → {candidate}), use --force to downgrade"
    return False, "up to date"


@dataclass
class UpgradeResult:
    name: str
    from_version: str
    to_version: str
    record: InstalledPackage


@dataclass
class UpgradeSummary:
    """Outcome of upgrading every installed package"""
    upgraded: List[UpgradeResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def __str__(self) -> str:
        return f"{len(self.upgraded)} upgraded, {len(self.skipped)} skipped, {len(self.failures)} failed"


class UpgradeService:
    """Upgrade installed packages from the catalog"""

    def __init__(self, state: StateStore, index: IndexClient, manager: DeploymentManager):
        self.state = state
        self.index = index
        self.manager = manager

    def fetch_candidate(self, name: str, target_version: Optional[str] = None) -> Package:
        """
        Load the catalog manifest to upgrade to.

        Args:
            name: Package name
            target_version: Pinned version, "latest", or None for the current catalog entry
        """
        if target_version and target_version != LATEST and _parse(target_version) is None:
            raise ValidationError(f"invalid target version {target_version!r}", field="version")

        lookup = f"{name}@{target_version}" if target_version else name
        candidate = Package.from_yaml(self.index.resolve(lookup), source=lookup)
        if candidate.name != name:
            raise ValidationError(
                f"catalog manifest for {name} declares a different name: {candidate.name}",
                field="name"
            )
        return candidate

    def upgrade(self, name: str, target_version: Optional[str] = None) -> UpgradeResult:
        """
        Upgrade one package, keeping its parameter values.

        Raises:
            NotFoundError: if the package is not installed or the version is unknown
            UpgradeNotNeededError: if the candidate is not newer
            UpgradeError: if the new version failed to deploy (with rollback outcome)
        """
        validate_package_name(name)
        record = self.state.get(name)
        candidate = self.fetch_candidate(name, target_version)

        should_upgrade, reason = compare_versions(record.version, candidate.version)
        if not should_upgrade:
            raise UpgradeNotNeededError(name, reason)

        old_version = record.version
        logger.info(f"Upgrading {name}: {old_version} → {candidate.version}")
        self.state.set_status(name, PackageStatus.UPDATING)

        try:
            self.manager.stop(name, keep_record=True)
        except CompakError as e:
            self.state.set_status(name, PackageStatus.INSTALLED)
            raise UpgradeError(f"failed to stop old version (aborting upgrade): {e}", rolled_back=False) from e

        try:
            new_record = self.manager.deploy(candidate, record.values)
        except Exception as deploy_error:
            logger.warning(f"Deployment failed, attempting rollback to {old_version}...")
            try:
                self.manager.deploy(record.package, record.values)
            except Exception as rollback_error:
                self.state.set_status(name, PackageStatus.FAILED)
                raise UpgradeError(
                    f"failed to deploy upgraded package: {deploy_error} (rollback also failed: {rollback_error})",
                    rolled_back=False,
                    rollback_error=rollback_error
                ) from deploy_error
            raise UpgradeError(
                f"deployment failed, successfully rolled back to {old_version}: {deploy_error}",
                rolled_back=True
            ) from deploy_error

        log_event(
            logger,
            f"Successfully upgraded {name} to {candidate.version}",
            package=name,
            from_version=old_version,
            to_version=candidate.version
        )
        return UpgradeResult(
            name=name,
            from_version=old_version,
            to_version=candidate.version,
            record=new_record
        )

    def upgrade_all(self, target_version: Optional[str] = None) -> UpgradeSummary:
        """Upgrade every installed package; one failure does not stop the rest."""
        summary = UpgradeSummary()
        records = self.state.list()
        if not records:
            logger.info("No packages installed")
            return summary

        logger.info(f"Upgrading {len(records)} package(s)...")
        for i, record in enumerate(records, start=1):
            logger.info(f"[{i}/{len(records)}] Checking {record.name}...")
            try:
                summary.upgraded.append(self.upgrade(record.name, target_version))
            except UpgradeNotNeededError as e:
                logger.info(str(e))
                summary.skipped.append(record.name)
            except CompakError as e:
                logger.error(f"Failed: {e}")
                summary.failures[record.name] = str(e)

        logger.info(str(summary))
        return summary
