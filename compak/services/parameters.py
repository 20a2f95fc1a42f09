# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Parameter Engine

Single responsibility: resolve, validate and render package parameter values.

Resolution order (lowest to highest precedence):
    declared defaults < manifest presets < caller overrides
"""

import json
import os
import re
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from compak.core.errors import ValidationError
from compak.models.package_models import Package, Param, ParamType

logger = logging.getLogger(__name__)

ENV_FILE_NAME = ".env"
MAX_VALUE_LENGTH = 1000

_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?")
_BOOLEAN_RE = re.compile(r"(true|false|yes|no|1|0)")
_PORT_RE = re.compile(r"[1-9]\d{0,4}")
_FORBIDDEN_CHARS = ("\x00", "\r", "\n")


def merge_values(package: Package, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Resolve the effective value of every parameter.

    Empty defaults are dropped so a required parameter without a value stays
    absent instead of resolving to "".
    """
    values: Dict[str, str] = {}

    for key, param in package.parameters.items():
        if param.default != "":
            values[key] = param.default

    values.update(package.values)

    if overrides:
        values.update({str(k): str(v) for k, v in overrides.items()})

    return values


def _check_value(key: str, param_type: ParamType, value: str) -> None:
    if len(value) > MAX_VALUE_LENGTH:
        raise ValidationError(
            f"parameter '{key}' value too long (max {MAX_VALUE_LENGTH} characters)",
            field=key
        )
    if any(ch in value for ch in _FORBIDDEN_CHARS):
        raise ValidationError(f"parameter '{key}' contains invalid characters", field=key)

    if param_type == ParamType.NUMBER:
        if not _NUMBER_RE.fullmatch(value):
            raise ValidationError(f"parameter '{key}' must be a valid number", field=key)
    elif param_type == ParamType.BOOLEAN:
        if not _BOOLEAN_RE.fullmatch(value.lower()):
            raise ValidationError(f"parameter '{key}' must be a boolean value (true/false)", field=key)
    elif param_type == ParamType.PORT:
        if not _PORT_RE.fullmatch(value) or not 1 <= int(value) <= 65535:
            raise ValidationError(f"parameter '{key}' must be a valid port number (1-65535)", field=key)


def validate_parameters(params: Mapping[str, Param], values: Mapping[str, str]) -> None:
    """
    Check resolved values against their parameter declarations.

    Raises:
        ValidationError: naming the first offending parameter
    """
    for key in sorted(params):
        param = params[key]
        value = values.get(key, "")

        if param.required and value == "":
            raise ValidationError(f"required parameter '{key}' is missing", field=key)

        if value != "":
            _check_value(key, param.type, value)


def validate_overrides(package: Package, overrides: Optional[Mapping[str, str]]) -> None:
    """
    Reject overrides for undeclared parameters and report required parameters
    that nothing resolves. All problems are reported together.
    """
    overrides = overrides or {}
    problems: List[str] = []

    unknown = sorted(k for k in overrides if k not in package.parameters)
    if unknown:
        problems.append(f"unknown parameters: {', '.join(unknown)}")

    resolved = merge_values(package, overrides)
    missing = sorted(
        key for key, param in package.parameters.items()
        if param.required and resolved.get(key, "") == ""
    )
    if missing:
        problems.append(f"missing required parameters: {', '.join(missing)}")

    if problems:
        raise ValidationError(
            f"invalid parameters for {package.name}: {'; '.join(problems)}",
            details={"unknown": unknown, "missing": missing}
        )


def parse_set_values(items: Optional[Iterable[str]]) -> Dict[str, str]:
    """
    Parse repeated ``--set KEY=VALUE`` arguments.

    The value may itself contain '='; only the first one splits.
    """
    values: Dict[str, str] = {}
    invalid: List[str] = []

    for item in items or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            invalid.append(item)
            continue
        values[key] = value

    if invalid:
        raise ValidationError(
            f"invalid --set values (expected KEY=VALUE): {', '.join(invalid)}",
            field="set"
        )
    return values


def _quote(value: str) -> str:
    if '"' in value or "\n" in value:
        return json.dumps(value, ensure_ascii=False)
    return value


def render_env_file(values: Mapping[str, str]) -> str:
    """Render values as sorted KEY=VALUE lines."""
    lines = [f"{key}={_quote(values[key])}" for key in sorted(values)]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def write_env_file(directory: Path, values: Mapping[str, str]) -> Path:
    """
    Write the .env file for a deployment working directory.

    Returns:
        Path to the written file (mode 0600)
    """
    env_path = Path(directory) / ENV_FILE_NAME
    fd = os.open(env_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(render_env_file(values))
    os.chmod(env_path, 0o600)
    logger.debug(f"Wrote {len(values)} values to {env_path}")
    return env_path
