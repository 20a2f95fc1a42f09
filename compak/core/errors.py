# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for compak.

All exceptions inherit from CompakError for consistent error handling.
Lower layers wrap the errors of the layer beneath them (``raise ... from e``);
the CLI renders the final message and exits non-zero.
"""

from typing import Optional


class CompakError(Exception):
    """Base exception for all compak errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize compak error.

        Args:
            message: Human-readable error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for structured logging."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(CompakError):
    """Package, catalog entry, or pinned version absent."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        details: Optional[dict] = None,
        message: Optional[str] = None
    ):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Package", "Catalog entry")
            identifier: Resource identifier
            details: Additional error details
            message: Optional message replacing the default one
        """
        super().__init__(message or f"{resource} not found: {identifier}", details=details)
        self.resource = resource
        self.identifier = identifier


class VersionNotFoundError(NotFoundError):
    """A pinned version does not exist anywhere in the catalog history."""

    def __init__(self, name: str, version: str, details: Optional[dict] = None):
        super().__init__(
            "Version",
            f"{name}@{version}",
            details=details,
            message=f"version {version} of {name} not found in catalog history"
        )
        self.name = name
        self.version = version


class ValidationError(CompakError):
    """Manifest schema, parameter, or unsafe name/path validation failed."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        """
        Initialize validation error.

        Args:
            message: Validation error message
            field: Field that failed validation
            details: Additional error details
        """
        super().__init__(message, details=details)
        self.field = field


class AlreadyInstalledError(ValidationError):
    """Package is installed with a different version than requested."""

    def __init__(self, name: str, installed_version: str, requested_version: str):
        message = (
            f"package {name} is already installed with version {installed_version} "
            f"(requested: {requested_version}). Use 'compak upgrade' to update or "
            f"'compak uninstall' first"
        )
        super().__init__(message, field="name")
        self.installed_version = installed_version
        self.requested_version = requested_version


class NetworkError(CompakError):
    """HTTP or version-control failure."""

    def __init__(self, message: str, url: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.url = url


class StateCorruptionError(CompakError):
    """Installed-package state file is oversized or malformed."""

    def __init__(self, message: str, state_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.state_file = state_file


class ExternalToolError(CompakError):
    """Compose engine returned an error or a non-zero exit."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        stderr: Optional[str] = None,
        details: Optional[dict] = None
    ):
        """
        Initialize external tool error.

        Args:
            message: Error message
            command: Command line that failed
            stderr: Captured standard error of the command
            details: Additional error details
        """
        super().__init__(message, details=details)
        self.command = command
        self.stderr = stderr


class ConfigurationError(CompakError):
    """Configuration error."""

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.config_file = config_file


class UpgradeNotNeededError(CompakError):
    """Installed version is current, or the candidate would be a downgrade."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Package {name} is already {reason}")
        self.name = name
        self.reason = reason


class UpgradeError(CompakError):
    """Upgrade deployment failed; carries the outcome of the rollback attempt."""

    def __init__(
        self,
        message: str,
        rolled_back: bool,
        rollback_error: Optional[Exception] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, details=details)
        self.rolled_back = rolled_back
        self.rollback_error = rollback_error


# Error Message Utilities

def sanitize_error_for_user(error: Exception, include_type: bool = False) -> str:
    """
    Sanitize error messages for terminal display.

    Args:
        error: The exception to sanitize
        include_type: Whether to include exception type

    Returns:
        User-friendly error message without stack trace
    """
    error_msg = str(error).strip()

    # Limit message length
    if len(error_msg) > 2000:
        error_msg = error_msg[:2000] + "..."

    if include_type:
        return f"{error.__class__.__name__}: {error_msg}"

    return error_msg
