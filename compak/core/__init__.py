# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for compak.

This package contains:
- config: Configuration management
- errors: Custom exceptions
- logging: Structured logging
"""

from compak.core.config import get_config, load_config, Config
from compak.core.errors import CompakError, NotFoundError, ValidationError
from compak.core.logging import get_logger, configure_logging

__all__ = [
    "get_config",
    "load_config",
    "Config",
    "CompakError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
    "configure_logging",
]
