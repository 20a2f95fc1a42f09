# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides pytest fixtures for configuration, a mocked compose engine, an
in-memory OCI registry served through httpx.MockTransport, and git-backed
catalog repositories built with GitPython.
"""

import re
from pathlib import Path
from typing import Dict, Optional, Tuple
from unittest.mock import MagicMock

import git
import httpx
import pytest
import yaml

from compak.core.config import Config
from compak.services.compose import ComposeEngine, ComposeProject, COMPOSE_FILE, ENV_FILE
from compak.services.oci import compute_digest
from compak.services.state import StateStore

TEST_ACTOR = git.Actor("compak tests", "tests@example.com")

SAMPLE_COMPOSE = """services:
  web:
    image: nginx:alpine
    ports:
      - "${PORT:-8080}:80"
"""


# ============================================================================
# Configuration / State
# ============================================================================

@pytest.fixture
def config(tmp_path) -> Config:
    """Configuration rooted in a temporary state directory"""
    return Config(
        state_dir=tmp_path / "state",
        index_repo_url="https://example.com/catalog.git",
        compose_command=("docker", "compose"),
    )


@pytest.fixture
def state_store(config) -> StateStore:
    return StateStore(config.state_dir, config.state_file)


# ============================================================================
# Compose Engine
# ============================================================================

@pytest.fixture
def compose_engine():
    """
    Mocked compose engine.

    load_project returns a real ComposeProject so callers see the paths
    the deployment manager prepared.
    """
    engine = MagicMock(spec=ComposeEngine)

    def load_project(working_dir, project_name):
        working_dir = Path(working_dir)
        return ComposeProject(
            name=project_name,
            working_dir=working_dir,
            compose_file=working_dir / COMPOSE_FILE,
            env_file=working_dir / ENV_FILE,
        )

    engine.load_project.side_effect = load_project
    engine.ps.return_value = []
    return engine


# ============================================================================
# Package data
# ============================================================================

def package_manifest(name: str = "webapp", version: str = "1.0.0", **extra) -> dict:
    manifest = {
        "name": name,
        "version": version,
        "description": f"{name} test package",
        "author": "compak tests",
        "parameters": {
            "PORT": {"type": "port", "default": "8080", "description": "Host port"},
            "DB_PASSWORD": {"type": "string", "required": True},
        },
    }
    manifest.update(extra)
    return manifest


def write_package_dir(path: Path, manifest: Optional[dict] = None, compose: str = SAMPLE_COMPOSE) -> Path:
    """Create a local package directory with package.yaml and docker-compose.yaml"""
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.yaml").write_text(yaml.safe_dump(manifest or package_manifest()))
    (path / COMPOSE_FILE).write_text(compose)
    return path


@pytest.fixture
def package_dir(tmp_path) -> Path:
    return write_package_dir(tmp_path / "src" / "webapp")


# ============================================================================
# Catalog (git)
# ============================================================================

class CatalogRepo:
    """A git catalog repository whose commits are built by the test"""

    def __init__(self, path: Path, paks_subdir: str = "paks"):
        self.path = Path(path)
        self.paks_subdir = paks_subdir
        self.repo = git.Repo.init(self.path)

    def write(self, filename: str, content) -> Path:
        target = self.path / self.paks_subdir / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, dict):
            content = yaml.safe_dump(content, sort_keys=False)
        target.write_text(content)
        return target

    def commit(self, message: str, *files: Path) -> str:
        self.repo.index.add([str(f.relative_to(self.path)) for f in files])
        commit = self.repo.index.commit(message, author=TEST_ACTOR, committer=TEST_ACTOR)
        return commit.hexsha

    def publish(self, name: str, content, message: Optional[str] = None) -> str:
        """Write paks/<name>.yaml and commit it"""
        path = self.write(f"{name}.yaml", content)
        return self.commit(message or f"Update {name}", path)


def catalog_entry(name: str = "webapp", version: str = "1.0.0", **extra) -> dict:
    """A manifest that is also a valid catalog entry"""
    entry = package_manifest(name, version)
    entry.update({
        "source": f"https://example.com/{name}/docker-compose.yaml",
        "homepage": f"https://example.com/{name}",
        "tags": ["web"],
    })
    entry.update(extra)
    return entry


@pytest.fixture
def catalog(config) -> CatalogRepo:
    """Catalog repository created directly at the mirror path (no clone needed)"""
    return CatalogRepo(config.index_dir, config.index_paks_subdir)


@pytest.fixture
def compose_source() -> httpx.MockTransport:
    """Serves SAMPLE_COMPOSE for every catalog entry's source URL"""
    return httpx.MockTransport(lambda request: httpx.Response(200, text=SAMPLE_COMPOSE))


# ============================================================================
# OCI registry
# ============================================================================

class FakeRegistry:
    """
    In-memory OCI distribution registry.

    Serves blob upload/download and manifest push/pull; optionally demands
    a bearer token obtained from /token.
    """

    HOST = "registry.example.com"
    TOKEN = "test-token"

    def __init__(self, require_token: bool = False):
        self.require_token = require_token
        self.blobs: Dict[str, bytes] = {}
        self.manifests: Dict[Tuple[str, str], bytes] = {}
        self.requests = []
        self._uploads = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _challenge(self) -> httpx.Response:
        return httpx.Response(401, headers={
            "WWW-Authenticate": (
                f'Bearer realm="https://{self.HOST}/token",'
                f'service="{self.HOST}",scope="repository:user/webapp:pull,push"'
            )
        })

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/token":
            return httpx.Response(200, json={"token": self.TOKEN})

        if self.require_token and request.headers.get("Authorization") != f"Bearer {self.TOKEN}":
            return self._challenge()

        match = re.match(r"^/v2/(?P<repo>.+)/blobs/uploads/(?P<upload>[^/]*)$", path)
        if match:
            if request.method == "POST":
                self._uploads += 1
                return httpx.Response(
                    202,
                    headers={"Location": f"/v2/{match['repo']}/blobs/uploads/u{self._uploads}?state=abc"}
                )
            if request.method == "PUT":
                digest = request.url.params["digest"]
                if compute_digest(request.content) != digest:
                    return httpx.Response(400, text="digest invalid")
                self.blobs[digest] = request.content
                return httpx.Response(201, headers={"Docker-Content-Digest": digest})

        match = re.match(r"^/v2/(?P<repo>.+)/blobs/(?P<digest>sha256:[a-f0-9]{64})$", path)
        if match:
            data = self.blobs.get(match["digest"])
            if data is None:
                return httpx.Response(404)
            if request.method == "HEAD":
                return httpx.Response(200, headers={"Content-Length": str(len(data))})
            return httpx.Response(200, content=data)

        match = re.match(r"^/v2/(?P<repo>.+)/manifests/(?P<ref>[^/]+)$", path)
        if match:
            key = (match["repo"], match["ref"])
            if request.method == "PUT":
                digest = compute_digest(request.content)
                self.manifests[key] = request.content
                self.manifests[(match["repo"], digest)] = request.content
                return httpx.Response(201, headers={"Docker-Content-Digest": digest})
            data = self.manifests.get(key)
            if data is None:
                return httpx.Response(404)
            return httpx.Response(
                200,
                content=data,
                headers={
                    "Content-Type": "application/vnd.oci.image.manifest.v1+json",
                    "Docker-Content-Digest": compute_digest(data),
                }
            )

        return httpx.Response(404)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()
