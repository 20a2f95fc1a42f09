# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Data Models

Defines data structures for paks: manifests and their typed parameters,
installed-package records, catalog entries and search results.
"""

import json
from typing import List, Dict, Any, Union
from datetime import datetime, UTC
from enum import Enum

import yaml
from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from compak.core.errors import ValidationError

LATEST = "latest"

_url_adapter = TypeAdapter(AnyUrl)


def _stringify(value: Any) -> Any:
    """YAML scalars (8080, true, 1.5) become the strings the .env file needs."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _check_url(value: str) -> str:
    try:
        _url_adapter.validate_python(value)
    except PydanticValidationError:
        raise ValueError(f"{value!r} is not a valid URL")
    return value


def format_validation_errors(error: PydanticValidationError) -> str:
    """Flatten pydantic errors into one line: 'field: message; field: message'"""
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


class ParamType(str, Enum):
    """Type tag of a package parameter"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    PORT = "port"


class PackageStatus(str, Enum):
    """Status of an installed package record"""
    INSTALLED = "installed"
    FAILED = "failed"
    UPDATING = "updating"


class Param(BaseModel):
    """Configurable parameter declared by a package"""
    model_config = ConfigDict(extra="ignore")

    description: str = ""
    type: ParamType = ParamType.STRING
    default: str = ""
    required: bool = False

    @field_validator("description", "default", mode="before")
    @classmethod
    def _coerce_scalars(cls, v):
        return _stringify(v)

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, v):
        return v or ParamType.STRING


class Package(BaseModel):
    """
    Package manifest (package.yaml / package.json).

    YAML and JSON are interchangeable; unknown keys are ignored.
    """
    model_config = ConfigDict(extra="ignore")

    name: str
    version: str = LATEST
    description: str = ""
    author: str = ""
    license: str = ""
    homepage: str = ""
    repository: str = ""
    source: str = ""
    tags: List[str] = Field(default_factory=list)
    parameters: Dict[str, Param] = Field(default_factory=dict)
    values: Dict[str, str] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, v):
        return LATEST if v is None else _stringify(v)

    @field_validator("description", "author", "license", "homepage", "repository", "source", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        return _stringify(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _no_tags(cls, v):
        return v or []

    @field_validator("parameters", mode="before")
    @classmethod
    def _no_parameters(cls, v):
        return v or {}

    @field_validator("values", mode="before")
    @classmethod
    def _coerce_values(cls, v):
        if not v:
            return {}
        if isinstance(v, dict):
            return {str(k): _stringify(val) for k, val in v.items()}
        return v

    @property
    def ref(self) -> str:
        return f"{self.name}@{self.version}"

    @classmethod
    def from_mapping(cls, data: Any, source: str = "manifest") -> "Package":
        """Build a package from already-parsed manifest data."""
        if not isinstance(data, dict):
            raise ValidationError(f"{source}: manifest must be a mapping", field="manifest")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"{source}: invalid manifest: {format_validation_errors(e)}") from e

    @classmethod
    def from_yaml(cls, data: Union[bytes, str], source: str = "package.yaml") -> "Package":
        """Parse a YAML manifest (JSON documents parse too)."""
        try:
            parsed = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise ValidationError(f"failed to parse {source}: {e}", field="manifest") from e
        return cls.from_mapping(parsed, source)

    @classmethod
    def from_json(cls, data: Union[bytes, str], source: str = "package.json") -> "Package":
        """Parse a JSON manifest."""
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValidationError(f"failed to parse {source}: {e}", field="manifest") from e
        return cls.from_mapping(parsed, source)


class InstalledPackage(BaseModel):
    """Record of an installed package (one per name in installed.json)"""
    package: Package
    install_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    values: Dict[str, str] = Field(default_factory=dict)
    status: PackageStatus = PackageStatus.INSTALLED

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def version(self) -> str:
        return self.package.version


class IndexEntry(BaseModel):
    """
    Catalog metadata, one file per pak under <catalog>/<paks>/<name>.yaml.

    Validated on every catalog refresh; any invalid entry fails the refresh.
    """
    model_config = ConfigDict(extra="ignore")

    name: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    version: str = Field(min_length=1)
    description: str = Field(min_length=1, max_length=500)
    author: str = Field(min_length=1)
    homepage: str = ""
    repository: str = ""
    source: str
    tags: List[str] = Field(default_factory=list)

    @field_validator("version", "homepage", "repository", mode="before")
    @classmethod
    def _coerce_scalars(cls, v):
        return _stringify(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _no_tags(cls, v):
        return v or []

    @field_validator("homepage", "repository")
    @classmethod
    def _optional_url(cls, v: str) -> str:
        return _check_url(v) if v else v

    @field_validator("source")
    @classmethod
    def _required_url(cls, v: str) -> str:
        return _check_url(v)

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name, description and tags."""
        if not query:
            return True
        query = query.lower()
        haystack = [self.name, self.description, *self.tags]
        return any(query in field.lower() for field in haystack)

    def to_search_result(self) -> "SearchResult":
        return SearchResult(
            name=self.name,
            version=self.version,
            description=self.description,
            author=self.author,
            homepage=self.homepage,
            source=self.source
        )


class SearchResult(BaseModel):
    """Read-only projection of an index entry used for discovery"""
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    author: str = ""
    homepage: str = ""
    source: str = ""
