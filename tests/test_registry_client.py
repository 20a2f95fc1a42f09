# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit Tests for the OCI Registry Client

Tests reference parsing, artifact push/pull against an in-memory registry,
digest verification and the registry auth challenge flow.
"""

import base64
import json
import os

import httpx
import pytest

from compak.core.errors import CompakError, NetworkError, NotFoundError, ValidationError
from compak.services.credentials import Credential, CredentialChain, CredentialProvider
from compak.services.oci import (
    ARTIFACT_TYPE,
    COMPOSE_FILE,
    MEDIA_TYPE_COMPOSE,
    MEDIA_TYPE_EMPTY,
    MEDIA_TYPE_PACKAGE,
    PACKAGE_FILE,
    OCIRegistryClient,
    compute_digest,
    is_registry_reference,
    parse_challenge,
    parse_reference,
)
from conftest import FakeRegistry

REF = f"{FakeRegistry.HOST}/user/webapp:1.0.0"


class StaticProvider(CredentialProvider):
    def __init__(self, credential: Credential):
        self.credential = credential

    def get(self, registry: str) -> Credential:
        return self.credential


def make_client(config, registry: FakeRegistry, credential: Credential = Credential()) -> OCIRegistryClient:
    return OCIRegistryClient(
        config,
        credentials=CredentialChain([StaticProvider(credential)]),
        http_transport=registry.transport,
    )


class TestParseReference:
    """Test suite for reference parsing"""

    @pytest.mark.parametrize("ref,registry,repository,tag", [
        ("ghcr.io/user/webapp:1.0.0", "ghcr.io", "user/webapp", "1.0.0"),
        ("ghcr.io/org/team/webapp", "ghcr.io", "org/team/webapp", "latest"),
        ("localhost:5000/webapp:dev", "localhost:5000", "webapp", "dev"),
        ("user/webapp:2", "registry-1.docker.io", "user/webapp", "2"),
        ("nginx", "registry-1.docker.io", "library/nginx", "latest"),
    ])
    def test_valid(self, ref, registry, repository, tag):
        parsed = parse_reference(ref)
        assert (parsed.registry, parsed.repository, parsed.tag) == (registry, repository, tag)
        assert parsed.digest is None

    def test_digest(self):
        """Test that a digest reference addresses the manifest by digest"""
        digest = "sha256:" + "a" * 64

        parsed = parse_reference(f"ghcr.io/user/webapp@{digest}")

        assert parsed.digest == digest
        assert parsed.reference == digest
        assert str(parsed) == f"ghcr.io/user/webapp@{digest}"

    @pytest.mark.parametrize("ref", [
        "",
        " ghcr.io/user/webapp",
        "ghcr.io/User/Webapp",
        "ghcr.io/user/webapp:bad tag",
        "ghcr.io/user/webapp:-leading-dash",
        "ghcr.io/user/webapp@sha256:xyz",
    ])
    def test_invalid(self, ref):
        with pytest.raises(ValidationError):
            parse_reference(ref)


class TestIsRegistryReference:
    """Test suite for telling registry references from catalog names"""

    @pytest.mark.parametrize("ref", ["ghcr.io/user/webapp", "localhost:5000/webapp", "user/webapp:1.0"])
    def test_registry(self, ref):
        assert is_registry_reference(ref)

    @pytest.mark.parametrize("ref", ["webapp", "webapp@1.0.0", "user/webapp"])
    def test_catalog_name(self, ref):
        assert not is_registry_reference(ref)


class TestParseChallenge:
    def test_bearer(self):
        scheme, params = parse_challenge('Bearer realm="https://auth.example.com/token",service="registry"')
        assert scheme == "bearer"
        assert params == {"realm": "https://auth.example.com/token", "service": "registry"}

    def test_basic(self):
        assert parse_challenge('Basic realm="registry"') == ("basic", {"realm": "registry"})


class TestPush:
    """Test suite for publishing artifacts"""

    def test_manifest_layout(self, config, fake_registry, package_dir):
        """Test the artifact manifest: empty config plus two titled layers"""
        digest = make_client(config, fake_registry).push(package_dir, REF)

        manifest_bytes = fake_registry.manifests[("user/webapp", "1.0.0")]
        manifest = json.loads(manifest_bytes)
        assert digest == compute_digest(manifest_bytes)
        assert manifest["schemaVersion"] == 2
        assert manifest["artifactType"] == ARTIFACT_TYPE
        assert manifest["config"]["mediaType"] == MEDIA_TYPE_EMPTY
        assert manifest["config"]["size"] == 2
        assert [(layer["mediaType"], layer["annotations"]["org.opencontainers.image.title"])
                for layer in manifest["layers"]] == [
            (MEDIA_TYPE_PACKAGE, PACKAGE_FILE),
            (MEDIA_TYPE_COMPOSE, COMPOSE_FILE),
        ]

    def test_blobs_uploaded(self, config, fake_registry, package_dir):
        """Test that every layer is stored under its content digest"""
        make_client(config, fake_registry).push(package_dir, REF)

        package_bytes = (package_dir / PACKAGE_FILE).read_bytes()
        assert fake_registry.blobs[compute_digest(package_bytes)] == package_bytes
        assert fake_registry.blobs[compute_digest(b"{}")] == b"{}"

    def test_existing_blobs_skipped(self, config, fake_registry, package_dir):
        """Test that blobs already in the registry are not uploaded again"""
        client = make_client(config, fake_registry)
        client.push(package_dir, REF)
        fake_registry.requests.clear()

        client.push(package_dir, f"{FakeRegistry.HOST}/user/webapp:1.0.1")

        assert [r.method for r in fake_registry.requests] == ["HEAD", "HEAD", "HEAD", "PUT"]

    def test_missing_package_file(self, config, fake_registry, tmp_path):
        """Test that a missing package.yaml fails before any network call"""
        (tmp_path / COMPOSE_FILE).write_text("services: {}\n")

        with pytest.raises(ValidationError, match="package.yaml"):
            make_client(config, fake_registry).push(tmp_path, REF)

        assert fake_registry.requests == []

    def test_push_to_digest_rejected(self, config, fake_registry, package_dir):
        with pytest.raises(ValidationError, match="digest"):
            make_client(config, fake_registry).push(package_dir, f"{FakeRegistry.HOST}/user/webapp@sha256:{'b' * 64}")

    def test_plain_http_for_localhost(self, config, fake_registry, package_dir):
        """Test that localhost registries are spoken to over http"""
        make_client(config, fake_registry).push(package_dir, "localhost:5000/user/webapp:1.0.0")

        assert {r.url.scheme for r in fake_registry.requests} == {"http"}

    def test_https_by_default(self, config, fake_registry, package_dir):
        make_client(config, fake_registry).push(package_dir, REF)
        assert {r.url.scheme for r in fake_registry.requests} == {"https"}


class TestPull:
    """Test suite for fetching artifacts"""

    def test_round_trip(self, config, fake_registry, package_dir, tmp_path):
        """Test that pull reproduces the pushed files and nothing else"""
        client = make_client(config, fake_registry)
        client.push(package_dir, REF)
        dest = tmp_path / "pulled"

        written = client.pull(REF, dest)

        assert sorted(written) == [COMPOSE_FILE, PACKAGE_FILE]
        assert sorted(os.listdir(dest)) == [COMPOSE_FILE, PACKAGE_FILE]
        for name in (PACKAGE_FILE, COMPOSE_FILE):
            assert (dest / name).read_bytes() == (package_dir / name).read_bytes()

    def test_pull_by_digest(self, config, fake_registry, package_dir, tmp_path):
        client = make_client(config, fake_registry)
        digest = client.push(package_dir, REF)

        written = client.pull(f"{FakeRegistry.HOST}/user/webapp@{digest}", tmp_path / "pulled")

        assert sorted(written) == [COMPOSE_FILE, PACKAGE_FILE]

    def test_missing_artifact(self, config, fake_registry, tmp_path):
        """Test that an unknown tag raises NotFoundError and leaves no scaffolding"""
        dest = tmp_path / "pulled"

        with pytest.raises(NotFoundError):
            make_client(config, fake_registry).pull(REF, dest)

        assert os.listdir(dest) == []

    def test_blob_digest_mismatch(self, config, fake_registry, package_dir, tmp_path):
        """Test that tampered blob content is rejected"""
        client = make_client(config, fake_registry)
        client.push(package_dir, REF)
        compose_digest = compute_digest((package_dir / COMPOSE_FILE).read_bytes())
        fake_registry.blobs[compose_digest] = b"services: {evil: {image: x}}\n"
        dest = tmp_path / "pulled"

        with pytest.raises(NetworkError, match="digest mismatch"):
            client.pull(REF, dest)

        assert not (dest / COMPOSE_FILE).exists()

    def test_pulled_files_private(self, config, fake_registry, package_dir, tmp_path):
        client = make_client(config, fake_registry)
        client.push(package_dir, REF)
        dest = tmp_path / "pulled"

        client.pull(REF, dest)

        assert oct((dest / PACKAGE_FILE).stat().st_mode & 0o777) == oct(0o600)

    @staticmethod
    def rewrite_layers(registry: FakeRegistry, rewrite) -> None:
        """Replace the pushed manifest's layer list with rewrite(layers)"""
        key = ("user/webapp", "1.0.0")
        manifest = json.loads(registry.manifests[key])
        manifest["layers"] = rewrite(manifest["layers"])
        registry.manifests[key] = json.dumps(manifest).encode()

    def test_unknown_layer_skipped(self, config, fake_registry, package_dir, tmp_path):
        """Test that layers of an unknown media type are fetched but not extracted"""
        client = make_client(config, fake_registry)
        client.push(package_dir, REF)
        extra = b"not a pak file"
        fake_registry.blobs[compute_digest(extra)] = extra
        self.rewrite_layers(fake_registry, lambda layers: layers + [{
            "mediaType": "application/x-unknown",
            "digest": compute_digest(extra),
            "size": len(extra),
            "annotations": {"org.opencontainers.image.title": "extra.bin"},
        }])
        dest = tmp_path / "pulled"

        written = client.pull(REF, dest)

        assert sorted(written) == [COMPOSE_FILE, PACKAGE_FILE]
        assert sorted(os.listdir(dest)) == [COMPOSE_FILE, PACKAGE_FILE]

    def test_layer_write_failures_reported_after_all_layers(self, config, fake_registry, package_dir, tmp_path):
        """Test that a failed layer write is reported once every layer has been tried"""
        client = make_client(config, fake_registry)
        client.push(package_dir, REF)
        # compose layer first, so the package layer is only reached past the failure
        self.rewrite_layers(fake_registry, lambda layers: list(reversed(layers)))
        dest = tmp_path / "pulled"
        (dest / COMPOSE_FILE).mkdir(parents=True)

        with pytest.raises(CompakError, match=r"failed to process 1 layer\(s\): failed to write docker-compose.yaml"):
            client.pull(REF, dest)

        assert (dest / PACKAGE_FILE).read_bytes() == (package_dir / PACKAGE_FILE).read_bytes()
        assert (dest / COMPOSE_FILE).is_dir()


class TestRegistryAuth:
    """Test suite for the registry auth challenge flow"""

    def test_bearer_token_flow(self, config, package_dir, tmp_path):
        """Test that a bearer challenge is answered with a token, fetched once per client"""
        registry = FakeRegistry(require_token=True)
        client = make_client(config, registry)

        client.push(package_dir, REF)
        token_requests = [r for r in registry.requests if r.url.path == "/token"]
        assert len(token_requests) == 1
        assert token_requests[0].url.params["service"] == FakeRegistry.HOST
        assert token_requests[0].url.params["scope"] == "repository:user/webapp:pull,push"

        written = client.pull(REF, tmp_path / "pulled")
        assert sorted(written) == [COMPOSE_FILE, PACKAGE_FILE]

    def test_credentials_sent_to_token_endpoint(self, config, package_dir):
        """Test that stored credentials are exchanged with basic auth"""
        registry = FakeRegistry(require_token=True)

        make_client(config, registry, Credential("alice", "s3cret")).push(package_dir, REF)

        token_request = next(r for r in registry.requests if r.url.path == "/token")
        expected = base64.b64encode(b"alice:s3cret").decode()
        assert token_request.headers["Authorization"] == f"Basic {expected}"

    def test_anonymous_token_request(self, config, package_dir):
        registry = FakeRegistry(require_token=True)

        make_client(config, registry).push(package_dir, REF)

        token_request = next(r for r in registry.requests if r.url.path == "/token")
        assert "Authorization" not in token_request.headers

    def test_token_request_failure(self, config, package_dir):
        """Test that a refused token request surfaces as NetworkError"""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/token":
                return httpx.Response(403)
            return httpx.Response(401, headers={
                "WWW-Authenticate": f'Bearer realm="https://{FakeRegistry.HOST}/token",service="registry"'
            })

        client = OCIRegistryClient(
            config,
            credentials=CredentialChain([StaticProvider(Credential())]),
            http_transport=httpx.MockTransport(handler),
        )

        with pytest.raises(NetworkError, match="token request failed"):
            client.push(package_dir, REF)

    def test_basic_challenge(self, config, package_dir):
        """Test that a basic challenge is answered with the credential directly"""
        expected = "Basic " + base64.b64encode(b"bob:pw").decode()
        inner = FakeRegistry()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers.get("Authorization") != expected:
                return httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="registry"'})
            return inner.handler(request)

        client = OCIRegistryClient(
            config,
            credentials=CredentialChain([StaticProvider(Credential("bob", "pw"))]),
            http_transport=httpx.MockTransport(handler),
        )

        client.push(package_dir, REF)

        assert ("user/webapp", "1.0.0") in inner.manifests
