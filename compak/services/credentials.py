# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Registry credential providers.

Providers are consulted in order; the first non-empty credential wins.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from compak.core.config import Config, get_github_credentials

logger = logging.getLogger(__name__)

GITHUB_REGISTRY = "ghcr.io"


@dataclass(frozen=True)
class Credential:
    username: str = ""
    password: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.username and not self.password


EMPTY_CREDENTIAL = Credential()


class CredentialProvider:
    """Base class: return a credential for a registry host, or an empty one."""

    def get(self, registry: str) -> Credential:
        raise NotImplementedError


class EnvCredentialProvider(CredentialProvider):
    """GITHUB_USER / GITHUB_TOKEN, for ghcr.io only"""

    def get(self, registry: str) -> Credential:
        host = registry.rsplit(":", 1)[0]
        if host.lower() != GITHUB_REGISTRY:
            return EMPTY_CREDENTIAL

        username, token = get_github_credentials()
        if not username or not token:
            return EMPTY_CREDENTIAL

        logger.info("Using GITHUB_TOKEN for authentication")
        return Credential(username=username, password=token)


class DockerConfigCredentialProvider(CredentialProvider):
    """Credentials stored by ``docker login`` in config.json"""

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Args:
            config_dir: Directory holding config.json (default: ~/.docker)
        """
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".docker"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @staticmethod
    def candidate_keys(registry: str) -> List[str]:
        """Keys docker uses for a host in the ``auths`` map, in lookup order."""
        keys = []
        for base in (registry, f"https://{registry}"):
            keys.extend([base, f"{base}/v1/", f"{base}/v2/"])
        return keys

    @staticmethod
    def decode_auth(value: str) -> Credential:
        if not value:
            return EMPTY_CREDENTIAL
        try:
            decoded = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return EMPTY_CREDENTIAL
        username, sep, password = decoded.partition(":")
        if not sep:
            return EMPTY_CREDENTIAL
        return Credential(username=username, password=password)

    def get(self, registry: str) -> Credential:
        try:
            data = json.loads(self.config_file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"No usable docker config at {self.config_file}: {e}")
            return EMPTY_CREDENTIAL

        auths = data.get("auths") if isinstance(data, dict) else None
        if not isinstance(auths, dict):
            return EMPTY_CREDENTIAL

        for key in self.candidate_keys(registry):
            entry = auths.get(key)
            if isinstance(entry, dict):
                credential = self.decode_auth(entry.get("auth", ""))
                if credential.username:
                    return credential
        return EMPTY_CREDENTIAL


class AnonymousCredentialProvider(CredentialProvider):
    def get(self, registry: str) -> Credential:
        return EMPTY_CREDENTIAL


class CredentialChain:
    """Ordered provider list"""

    def __init__(self, providers: Sequence[CredentialProvider]):
        self.providers = list(providers)

    def get(self, registry: str) -> Credential:
        for provider in self.providers:
            credential = provider.get(registry)
            if not credential.is_empty:
                return credential
        return EMPTY_CREDENTIAL


def default_credential_chain(config: Config) -> CredentialChain:
    return CredentialChain([
        EnvCredentialProvider(),
        DockerConfigCredentialProvider(config.docker_config_dir),
        AnonymousCredentialProvider(),
    ])
