# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
State Store

Single responsibility: persist installed-package records in installed.json.

Every mutation is a whole-file read-modify-write. There is no locking;
concurrent writers race and the last one wins.
"""

import json
import os
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from compak.core.errors import NotFoundError, StateCorruptionError, ValidationError
from compak.models.package_models import (
    InstalledPackage,
    PackageStatus,
    format_validation_errors,
)

logger = logging.getLogger(__name__)

MAX_STATE_FILE_SIZE = 10 * 1024 * 1024
MAX_NAME_LENGTH = 100


def validate_package_name(name: str) -> None:
    """
    Reject names that could escape the state directory.

    Raises:
        ValidationError: if the name is empty, too long or contains a path separator
    """
    if not name:
        raise ValidationError("package name cannot be empty", field="name")
    if ".." in name or "/" in name or "\\" in name:
        raise ValidationError(f"invalid package name {name!r}: contains path characters", field="name")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"package name too long (max {MAX_NAME_LENGTH} characters)", field="name")


def _validate_record(name: str, record: InstalledPackage) -> None:
    validate_package_name(name)
    if not record.package.version:
        raise ValidationError(f"package {name}: version cannot be empty", field="version")


class StateStore:
    """Installed-package records keyed by name"""

    def __init__(self, state_dir: Path, state_file: Optional[Path] = None):
        """
        Initialize the state store.

        Args:
            state_dir: Directory that must contain the state file
            state_file: State file path (default: <state_dir>/installed.json)
        """
        self.state_dir = Path(state_dir)
        self.state_file = Path(state_file) if state_file else self.state_dir / "installed.json"
        self._check_containment()

    def _check_containment(self):
        root = self.state_dir.resolve()
        target = self.state_file.resolve()
        if not target.is_relative_to(root):
            raise ValidationError(
                f"state file {self.state_file} is outside the state directory {self.state_dir}",
                field="state_file"
            )

    def _load(self) -> Dict[str, InstalledPackage]:
        """
        Read and decode the state file.

        Returns:
            Records keyed by package name (empty if the file does not exist)
        """
        if not self.state_file.exists():
            return {}

        size = self.state_file.stat().st_size
        if size > MAX_STATE_FILE_SIZE:
            raise StateCorruptionError(
                f"state file too large ({size} bytes, max {MAX_STATE_FILE_SIZE})",
                state_file=str(self.state_file)
            )

        raw = self.state_file.read_text(encoding="utf-8")
        if not raw.strip():
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateCorruptionError(
                f"state file is not valid JSON: {e}",
                state_file=str(self.state_file)
            ) from e
        if not isinstance(data, dict):
            raise StateCorruptionError(
                "state file must contain a JSON object",
                state_file=str(self.state_file)
            )

        records = {}
        for name, record in data.items():
            try:
                records[name] = InstalledPackage.model_validate(record)
            except PydanticValidationError as e:
                raise StateCorruptionError(
                    f"invalid record for {name}: {format_validation_errors(e)}",
                    state_file=str(self.state_file)
                ) from e
        return records

    def _save(self, records: Dict[str, InstalledPackage]):
        self.state_dir.mkdir(parents=True, exist_ok=True)
        data = {
            name: records[name].model_dump(mode="json")
            for name in sorted(records)
        }
        fd = os.open(self.state_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.chmod(self.state_file, 0o600)

    def list(self) -> List[InstalledPackage]:
        """All records, sorted by package name."""
        records = self._load()
        return [records[name] for name in sorted(records)]

    def get(self, name: str) -> InstalledPackage:
        """
        Get the record for a package.

        Raises:
            NotFoundError: if the package is not installed
            ValidationError: if the stored record fails validation
        """
        validate_package_name(name)
        records = self._load()
        if name not in records:
            raise NotFoundError("Package", name, message=f"package {name} not found")
        record = records[name]
        _validate_record(name, record)
        return record

    def exists(self, name: str) -> bool:
        return name in self._load()

    def save(self, record: InstalledPackage):
        """Insert or replace the record for record.package.name."""
        _validate_record(record.name, record)
        records = self._load()
        records[record.name] = record
        self._save(records)
        logger.debug(f"Saved state for {record.package.ref} ({record.status.value})")

    def delete(self, name: str):
        """Remove a record; deleting an absent record is a no-op."""
        records = self._load()
        if records.pop(name, None) is not None:
            self._save(records)
            logger.debug(f"Deleted state for {name}")

    def set_status(self, name: str, status: PackageStatus) -> InstalledPackage:
        """Update only the status of an existing record."""
        records = self._load()
        if name not in records:
            raise NotFoundError("Package", name, message=f"package {name} not found")
        records[name] = records[name].model_copy(update={"status": PackageStatus(status)})
        self._save(records)
        return records[name]
