# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit Tests for core errors and logging
"""

import json
import logging

import pytest

from compak.core.errors import (
    AlreadyInstalledError,
    CompakError,
    ExternalToolError,
    NotFoundError,
    UpgradeNotNeededError,
    ValidationError,
    VersionNotFoundError,
    sanitize_error_for_user,
)
from compak.core.logging import JSONFormatter, configure_logging, log_event


class TestErrors:
    """Test suite for the error hierarchy"""

    @pytest.mark.parametrize("error", [
        NotFoundError("Package", "webapp"),
        VersionNotFoundError("webapp", "1.0.0"),
        ValidationError("bad"),
        AlreadyInstalledError("webapp", "1.0.0", "2.0.0"),
        ExternalToolError("boom"),
        UpgradeNotNeededError("webapp", "up to date"),
    ])
    def test_all_are_compak_errors(self, error):
        assert isinstance(error, CompakError)

    def test_not_found_default_message(self):
        assert str(NotFoundError("Package", "webapp")) == "Package not found: webapp"

    def test_version_not_found(self):
        error = VersionNotFoundError("webapp", "1.2.3")
        assert str(error) == "version 1.2.3 of webapp not found in catalog history"
        assert error.identifier == "webapp@1.2.3"

    def test_already_installed_is_validation_error(self):
        """Test that a version conflict reads as a validation problem"""
        error = AlreadyInstalledError("webapp", "1.0.0", "2.0.0")
        assert isinstance(error, ValidationError)
        assert "already installed with version 1.0.0 (requested: 2.0.0)" in str(error)

    def test_upgrade_not_needed_message(self):
        assert str(UpgradeNotNeededError("webapp", "up to date")) == "Package webapp is already up to date"

    def test_to_dict(self):
        error = ValidationError("bad value", field="PORT", details={"value": "x"})
        assert error.to_dict() == {
            "error": "ValidationError",
            "message": "bad value",
            "details": {"value": "x"},
        }


class TestSanitizeError:
    def test_truncates(self):
        message = sanitize_error_for_user(CompakError("x" * 3000))
        assert len(message) == 2003
        assert message.endswith("...")

    def test_include_type(self):
        assert sanitize_error_for_user(ValidationError(" bad "), include_type=True) == "ValidationError: bad"


class TestLogging:
    """Test suite for logging setup"""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        logger = logging.getLogger("compak")
        saved = (logger.level, list(logger.handlers), logger.propagate)
        yield
        logger.level, logger.handlers, logger.propagate = saved[0], saved[1], saved[2]

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord("compak.test", logging.INFO, __file__, 1, "installed %s", ("webapp",), None)
        record.package = "webapp"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "installed webapp"
        assert data["level"] == "INFO"
        assert data["logger"] == "compak.test"
        assert data["package"] == "webapp"

    def test_configure_logging_sets_root(self):
        logger = configure_logging(log_level="debug", log_format="json")

        assert logger.name == "compak"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert not logger.propagate

    def test_configure_logging_is_idempotent(self):
        configure_logging()
        logger = configure_logging()
        assert len(logger.handlers) == 1

    def test_configure_logging_with_file(self, tmp_path):
        """Test that a log file gets its own handler, creating parent directories"""
        log_file = tmp_path / "logs" / "compak.log"
        logger = configure_logging(log_file=log_file)

        logging.getLogger("compak.services.index").info("catalog refreshed")
        for handler in logger.handlers:
            handler.flush()

        assert len(logger.handlers) == 2
        assert "catalog refreshed" in log_file.read_text()
        logger.handlers[1].close()

    def test_log_event_passes_fields(self, caplog):
        logger = logging.getLogger("tests.events")
        with caplog.at_level(logging.INFO, logger="tests.events"):
            log_event(logger, "Successfully installed webapp@1.0.0", package="webapp", version="1.0.0")

        record = caplog.records[-1]
        assert record.getMessage() == "Successfully installed webapp@1.0.0"
        assert (record.package, record.version) == ("webapp", "1.0.0")
