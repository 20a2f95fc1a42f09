# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
OCI Registry Client

Single responsibility: publish and fetch paks as OCI artifacts.

An artifact is an OCI 1.1 image manifest with an empty config blob and two
layers, ``package.yaml`` and ``docker-compose.yaml``, each carrying its own
media type. The client speaks the OCI Distribution HTTP API directly.
"""

import base64
import hashlib
import json
import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import httpx

from compak.core.config import Config
from compak.core.errors import CompakError, NetworkError, NotFoundError, ValidationError
from compak.services.credentials import CredentialChain, Credential, default_credential_chain

logger = logging.getLogger(__name__)

PACKAGE_FILE = "package.yaml"
COMPOSE_FILE = "docker-compose.yaml"

MEDIA_TYPE_PACKAGE = "application/vnd.compak.package.config.v1+yaml"
MEDIA_TYPE_COMPOSE = "application/vnd.compak.compose.v1+yaml"
ARTIFACT_TYPE = "application/vnd.compak.package.v1+tar"

MEDIA_TYPE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_EMPTY = "application/vnd.oci.empty.v1+json"
EMPTY_JSON = b"{}"

ANNOTATION_TITLE = "org.opencontainers.image.title"
ANNOTATION_CREATED = "org.opencontainers.image.created"
ANNOTATION_REF_NAME = "org.opencontainers.image.ref.name"

LAYER_FILES = {
    MEDIA_TYPE_PACKAGE: PACKAGE_FILE,
    MEDIA_TYPE_COMPOSE: COMPOSE_FILE,
}

DEFAULT_TAG = "latest"
DOCKER_HUB = "docker.io"
DOCKER_HUB_REGISTRY = "registry-1.docker.io"

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")
_REPOSITORY_RE = re.compile(r"^[a-z0-9]+(?:[._-]+[a-z0-9]+)*(?:/[a-z0-9]+(?:[._-]+[a-z0-9]+)*)*$")
_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


# =============================================================================
# REFERENCES
# =============================================================================

@dataclass(frozen=True)
class Reference:
    """Parsed artifact reference: registry/repository[:tag][@digest]"""
    registry: str
    repository: str
    tag: str = DEFAULT_TAG
    digest: Optional[str] = None

    @property
    def reference(self) -> str:
        """Tag or digest used in manifest URLs."""
        return self.digest or self.tag

    def __str__(self) -> str:
        if self.digest:
            return f"{self.registry}/{self.repository}@{self.digest}"
        return f"{self.registry}/{self.repository}:{self.tag}"


def is_registry_reference(ref: str) -> bool:
    """A registry reference has a path and a host-like or tagged part."""
    return "/" in ref and ("." in ref or ":" in ref)


def parse_reference(ref: str) -> Reference:
    """
    Parse ``[registry/]repository[:tag][@sha256:digest]``.

    Raises:
        ValidationError: if the reference is malformed
    """
    if not ref or ref != ref.strip():
        raise ValidationError(f"invalid reference: {ref!r}", field="reference")

    name, _, digest = ref.partition("@")
    if digest and not _DIGEST_RE.match(digest):
        raise ValidationError(f"invalid digest in reference {ref}", field="reference")

    registry = DOCKER_HUB
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, name = first, rest

    tag = DEFAULT_TAG
    last_slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > last_slash:
        name, tag = name[:colon], name[colon + 1:]
        if not _TAG_RE.match(tag):
            raise ValidationError(f"invalid tag {tag!r} in reference {ref}", field="reference")

    if not _REPOSITORY_RE.match(name):
        raise ValidationError(f"invalid repository {name!r} in reference {ref}", field="reference")

    if registry == DOCKER_HUB:
        registry = DOCKER_HUB_REGISTRY
        if "/" not in name:
            name = f"library/{name}"

    return Reference(registry=registry, repository=name, tag=tag, digest=digest or None)


def compute_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


# =============================================================================
# AUTHENTICATION
# =============================================================================

def parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """'Bearer realm="...",service="..."' -> ('bearer', {'realm': ..., 'service': ...})"""
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(params))


class RegistryAuth(httpx.Auth):
    """
    Answers registry auth challenges.

    Basic challenges are answered with the credential directly; Bearer
    challenges exchange it (or nothing, for anonymous pulls) for a token
    at the advertised realm. The last token is reused until rejected.
    """
    requires_response_body = True

    def __init__(self, credential: Credential):
        self.credential = credential
        self._authorization: Optional[str] = None

    def _basic_header(self) -> str:
        raw = f"{self.credential.username}:{self.credential.password}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"

    def auth_flow(self, request: httpx.Request) -> Iterator[httpx.Request]:
        if self._authorization:
            request.headers["Authorization"] = self._authorization

        response = yield request
        if response.status_code != 401:
            return

        scheme, params = parse_challenge(response.headers.get("WWW-Authenticate", ""))

        if scheme == "basic":
            if self.credential.is_empty:
                return
            self._authorization = self._basic_header()

        elif scheme == "bearer" and params.get("realm"):
            query = {k: params[k] for k in ("service", "scope") if params.get(k)}
            token_request = httpx.Request("GET", params["realm"], params=query)
            if not self.credential.is_empty:
                token_request.headers["Authorization"] = self._basic_header()

            token_response = yield token_request
            if token_response.status_code != 200:
                raise NetworkError(
                    f"registry token request failed: HTTP {token_response.status_code}",
                    url=params["realm"]
                )
            try:
                body = token_response.json()
            except json.JSONDecodeError as e:
                raise NetworkError("registry token response is not JSON", url=params["realm"]) from e
            token = body.get("token") or body.get("access_token")
            if not token:
                raise NetworkError("registry token response carries no token", url=params["realm"])
            self._authorization = f"Bearer {token}"

        else:
            return

        request.headers["Authorization"] = self._authorization
        yield request


# =============================================================================
# OCI IMAGE LAYOUT
# =============================================================================

class OCILayout:
    """Minimal OCI image layout (oci-layout, index.json, blobs/sha256/) used as pull scratch space."""

    LAYOUT_FILE = "oci-layout"
    INDEX_FILE = "index.json"
    BLOBS_DIR = "blobs"

    def __init__(self, root: Path):
        self.root = Path(root)

    def blob_path(self, digest: str) -> Path:
        if not _DIGEST_RE.match(digest):
            raise ValidationError(f"unsupported digest {digest!r}", field="digest")
        path = self.root / self.BLOBS_DIR / "sha256" / digest.split(":", 1)[1]
        if not path.resolve().is_relative_to(self.root.resolve()):
            raise ValidationError("blob path outside destination directory", field="digest")
        return path

    def init(self):
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / self.LAYOUT_FILE).write_text(json.dumps({"imageLayoutVersion": "1.0.0"}))

    def write_blob(self, digest: str, data: bytes):
        path = self.blob_path(digest)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def read_blob(self, digest: str) -> bytes:
        return self.blob_path(digest).read_bytes()

    def has_blob(self, digest: str) -> bool:
        return self.blob_path(digest).exists()

    def tag_manifest(self, digest: str, size: int, ref_name: str):
        index = {
            "schemaVersion": 2,
            "manifests": [{
                "mediaType": MEDIA_TYPE_MANIFEST,
                "digest": digest,
                "size": size,
                "annotations": {ANNOTATION_REF_NAME: ref_name},
            }],
        }
        (self.root / self.INDEX_FILE).write_text(json.dumps(index, indent=2))

    def resolve_manifest(self, ref_name: str) -> dict:
        index = json.loads((self.root / self.INDEX_FILE).read_text())
        for desc in index.get("manifests", []):
            if desc.get("annotations", {}).get(ANNOTATION_REF_NAME) == ref_name:
                return json.loads(self.read_blob(desc["digest"]))
        raise NotFoundError("Manifest", ref_name)

    def cleanup(self):
        """Remove the layout scaffolding; failures are only warned about."""
        blobs = self.root / self.BLOBS_DIR
        try:
            shutil.rmtree(blobs)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove {blobs}: {e}")

        for name in (self.INDEX_FILE, self.LAYOUT_FILE):
            path = self.root / name
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")


# =============================================================================
# CLIENT
# =============================================================================

class OCIRegistryClient:
    """Push and pull pak artifacts"""

    def __init__(
        self,
        config: Config,
        credentials: Optional[CredentialChain] = None,
        http_transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize registry client.

        Args:
            config: Application configuration (timeout, docker config, plain HTTP)
            credentials: Credential provider chain (default: env, docker config, anonymous)
            http_transport: Optional transport, e.g. httpx.MockTransport in tests
        """
        self.timeout = config.http_timeout
        self.plain_http = config.registry_plain_http
        self.credentials = credentials or default_credential_chain(config)
        self.http_transport = http_transport

    def _scheme(self, registry: str) -> str:
        host = registry.split(":", 1)[0]
        if self.plain_http or host in ("localhost", "127.0.0.1"):
            return "http"
        return "https"

    def _client(self, ref: Reference) -> httpx.Client:
        return httpx.Client(
            base_url=f"{self._scheme(ref.registry)}://{ref.registry}",
            auth=RegistryAuth(self.credentials.get(ref.registry)),
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.http_transport,
        )

    @staticmethod
    def _check(response: httpx.Response, action: str, expected: Tuple[int, ...]):
        if response.status_code not in expected:
            body = response.text[:200].strip()
            raise NetworkError(
                f"failed to {action}: HTTP {response.status_code}{': ' + body if body else ''}",
                url=str(response.request.url)
            )

    # -- push --

    @staticmethod
    def _read_source(source_dir: Path, filename: str) -> bytes:
        path = source_dir / filename
        if not path.resolve().is_relative_to(source_dir.resolve()):
            raise ValidationError(f"{filename} path outside source directory", field="path")
        try:
            return path.read_bytes()
        except OSError as e:
            raise ValidationError(f"failed to read {filename}: {e}", field="path") from e

    def _push_blob(
        self,
        client: httpx.Client,
        ref: Reference,
        data: bytes,
        media_type: str,
        title: Optional[str] = None
    ) -> dict:
        digest = compute_digest(data)
        descriptor = {"mediaType": media_type, "digest": digest, "size": len(data)}
        if title:
            descriptor["annotations"] = {ANNOTATION_TITLE: title}

        head = client.head(f"/v2/{ref.repository}/blobs/{digest}")
        if head.status_code == 200:
            logger.debug(f"Blob {digest[:19]} already present")
            return descriptor

        start = client.post(f"/v2/{ref.repository}/blobs/uploads/")
        self._check(start, f"start upload of {title or media_type}", (202,))
        location = start.headers.get("Location")
        if not location:
            raise NetworkError("registry returned no upload location", url=str(start.request.url))

        upload_url = client.base_url.join(location).copy_merge_params({"digest": digest})
        put = client.put(
            upload_url,
            content=data,
            headers={"Content-Type": "application/octet-stream"}
        )
        self._check(put, f"upload {title or media_type}", (201,))
        return descriptor

    def push(self, source_dir: Path, reference: str) -> str:
        """
        Publish package.yaml and docker-compose.yaml as an artifact.

        Args:
            source_dir: Directory holding both files
            reference: Target reference (registry/repository:tag)

        Returns:
            Manifest digest
        """
        source_dir = Path(source_dir)
        package_data = self._read_source(source_dir, PACKAGE_FILE)
        compose_data = self._read_source(source_dir, COMPOSE_FILE)

        ref = parse_reference(reference)
        if ref.digest:
            raise ValidationError("cannot push to a digest reference", field="reference")

        try:
            with self._client(ref) as client:
                config_desc = self._push_blob(client, ref, EMPTY_JSON, MEDIA_TYPE_EMPTY)
                layers = [
                    self._push_blob(client, ref, package_data, MEDIA_TYPE_PACKAGE, title=PACKAGE_FILE),
                    self._push_blob(client, ref, compose_data, MEDIA_TYPE_COMPOSE, title=COMPOSE_FILE),
                ]

                manifest = {
                    "schemaVersion": 2,
                    "mediaType": MEDIA_TYPE_MANIFEST,
                    "artifactType": ARTIFACT_TYPE,
                    "config": config_desc,
                    "layers": layers,
                    "annotations": {
                        ANNOTATION_CREATED: datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
                    },
                }
                manifest_bytes = json.dumps(manifest, separators=(",", ":")).encode()
                response = client.put(
                    f"/v2/{ref.repository}/manifests/{ref.tag}",
                    content=manifest_bytes,
                    headers={"Content-Type": MEDIA_TYPE_MANIFEST}
                )
                self._check(response, f"push manifest {ref}", (201,))
        except httpx.HTTPError as e:
            raise NetworkError(f"failed to push {ref}: {e}", url=str(ref)) from e

        digest = compute_digest(manifest_bytes)
        logger.info(f"Pushed {ref} ({digest})")
        return digest

    # -- pull --

    def _fetch_manifest(self, client: httpx.Client, ref: Reference) -> bytes:
        response = client.get(
            f"/v2/{ref.repository}/manifests/{ref.reference}",
            headers={"Accept": MEDIA_TYPE_MANIFEST}
        )
        if response.status_code == 404:
            raise NotFoundError("Artifact", str(ref))
        self._check(response, f"fetch manifest {ref}", (200,))

        data = response.content
        if ref.digest and compute_digest(data) != ref.digest:
            raise NetworkError(f"manifest digest mismatch for {ref}", url=str(ref))
        return data

    def _fetch_blob(self, client: httpx.Client, ref: Reference, descriptor: dict) -> bytes:
        digest = descriptor["digest"]
        response = client.get(f"/v2/{ref.repository}/blobs/{digest}")
        self._check(response, f"fetch blob {digest}", (200,))

        data = response.content
        if compute_digest(data) != digest:
            raise NetworkError(f"blob digest mismatch: expected {digest}", url=str(response.request.url))
        if "size" in descriptor and len(data) != descriptor["size"]:
            raise NetworkError(f"blob size mismatch for {digest}", url=str(response.request.url))
        return data

    def _extract_layers(self, layout: OCILayout, ref_name: str, dest_dir: Path) -> List[str]:
        manifest = layout.resolve_manifest(ref_name)

        written: List[str] = []
        errors: List[str] = []
        for layer in manifest.get("layers", []):
            filename = LAYER_FILES.get(layer.get("mediaType"))
            if not filename:
                continue
            try:
                if not layout.has_blob(layer["digest"]):
                    continue
                target = dest_dir / filename
                target.write_bytes(layout.read_blob(layer["digest"]))
                target.chmod(0o600)
                written.append(filename)
                logger.info(f"Downloaded: {filename}")
            except (OSError, KeyError, ValidationError) as e:
                errors.append(f"failed to write {filename}: {e}")

        if errors:
            raise CompakError(f"failed to process {len(errors)} layer(s): {errors[0]}")
        return written

    def pull(self, reference: str, dest_dir: Path) -> List[str]:
        """
        Fetch an artifact and write its files into ``dest_dir``.

        Blobs are staged in a temporary OCI layout inside ``dest_dir`` which
        is removed afterwards, leaving only the extracted files.

        Returns:
            Names of the files written
        """
        ref = parse_reference(reference)
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        layout = OCILayout(dest_dir)

        try:
            layout.init()
            with self._client(ref) as client:
                manifest_bytes = self._fetch_manifest(client, ref)
                manifest_digest = compute_digest(manifest_bytes)
                try:
                    manifest = json.loads(manifest_bytes)
                except json.JSONDecodeError as e:
                    raise NetworkError(f"invalid manifest for {ref}: {e}", url=str(ref)) from e

                layout.write_blob(manifest_digest, manifest_bytes)
                layout.tag_manifest(manifest_digest, len(manifest_bytes), ref.reference)

                descriptors = [manifest["config"]] if manifest.get("config") else []
                descriptors.extend(manifest.get("layers", []))
                for descriptor in descriptors:
                    layout.write_blob(descriptor["digest"], self._fetch_blob(client, ref, descriptor))

            return self._extract_layers(layout, ref.reference, dest_dir)
        except httpx.HTTPError as e:
            raise NetworkError(f"failed to pull {ref}: {e}", url=str(ref)) from e
        finally:
            layout.cleanup()
