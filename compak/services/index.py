# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package Index Client

Single responsibility: mirror the git-backed catalog and answer queries
(search, lookup, manifest resolution including historical versions).
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import git
import yaml
from pydantic import ValidationError as PydanticValidationError

from compak.core.config import Config
from compak.core.errors import (
    NetworkError,
    NotFoundError,
    ValidationError,
    VersionNotFoundError,
)
from compak.models.package_models import (
    IndexEntry,
    SearchResult,
    format_validation_errors,
)
from compak.services.cache import TTLCache
from compak.services.state import validate_package_name

logger = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".yaml"


def split_versioned_name(target: str) -> Tuple[str, Optional[str]]:
    """'name@1.2.0' -> ('name', '1.2.0'); 'name' -> ('name', None)"""
    name, sep, version = target.partition("@")
    if sep and not version:
        raise ValidationError(f"invalid versioned package name: {target}", field="name")
    return name, (version if sep else None)


class VersionHistory:
    """
    (name, version) -> manifest index over the catalog history.

    Commits are walked newest first and each pair is recorded on first
    sight, so the most recent commit carrying a version wins. Manifest
    bytes are kept so reads need no open repository.
    """

    def __init__(self, paks_subdir: str):
        self.paks_subdir = paks_subdir
        self.commits: Dict[Tuple[str, str], str] = {}
        self.manifests: Dict[Tuple[str, str], bytes] = {}
        # Versions parsed per blob; unchanged files are shared across commits
        self._blob_versions: Dict[str, Optional[str]] = {}

    def _blob_version(self, blob) -> Optional[str]:
        if blob.hexsha not in self._blob_versions:
            version = None
            try:
                data = yaml.safe_load(blob.data_stream.read())
                if isinstance(data, dict) and data.get("version") is not None:
                    version = str(data["version"])
            except yaml.YAMLError:
                logger.debug(f"Skipping unparsable blob {blob.path}@{blob.hexsha[:8]}")
            self._blob_versions[blob.hexsha] = version
        return self._blob_versions[blob.hexsha]

    def build(self, repo: git.Repo) -> "VersionHistory":
        try:
            head_valid = repo.head.is_valid()
        except ValueError:
            head_valid = False
        if not head_valid:
            return self

        for commit in repo.iter_commits("HEAD"):
            try:
                paks_tree = commit.tree / self.paks_subdir
            except KeyError:
                continue

            for blob in paks_tree.blobs:
                if not blob.name.endswith(MANIFEST_SUFFIX):
                    continue
                name = blob.name[:-len(MANIFEST_SUFFIX)].split("@")[0]
                version = self._blob_version(blob)
                if version and (name, version) not in self.commits:
                    self.commits[(name, version)] = commit.hexsha
                    self.manifests[(name, version)] = blob.data_stream.read()

        logger.debug(f"Built version history: {len(self.commits)} (name, version) pairs")
        return self

    def read(self, name: str, version: str) -> bytes:
        """Manifest bytes of name@version exactly as committed."""
        data = self.manifests.get((name, version))
        if data is None:
            raise VersionNotFoundError(name, version)
        return data


class IndexClient:
    """Git-backed catalog of paks"""

    def __init__(self, config: Config, clock: Callable[[], float] = time.monotonic):
        """
        Initialize index client.

        Args:
            config: Application configuration (repo URL, mirror path, TTL)
            clock: Monotonic clock used for cache expiry
        """
        self.repo_url = config.index_repo_url
        self.repo_path = config.index_dir
        self.paks_subdir = config.index_paks_subdir
        self.cache: TTLCache[Dict[str, IndexEntry]] = TTLCache(config.index_ttl_seconds, clock=clock)
        self._history: Optional[VersionHistory] = None
        self._history_generation = -1

    @property
    def paks_path(self) -> Path:
        return self.repo_path / self.paks_subdir

    def ensure_repo(self):
        """Shallow-clone the catalog if there is no local mirror yet."""
        if (self.repo_path / ".git").exists():
            return

        if not self.repo_url.startswith("https://"):
            raise ValidationError(
                f"index repository URL must use https: {self.repo_url}",
                field="index_repo_url"
            )

        self.repo_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cloning package index from {self.repo_url}")
        try:
            git.Repo.clone_from(self.repo_url, self.repo_path, depth=1, single_branch=True)
        except git.GitCommandError as e:
            raise NetworkError(f"git clone failed: {e.stderr.strip() or e}", url=self.repo_url) from e

    def _open_repo(self) -> git.Repo:
        try:
            return git.Repo(self.repo_path)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
            raise NetworkError(f"failed to open index repository at {self.repo_path}: {e}") from e

    def update(self):
        """
        Fast-forward the local mirror from its remote.

        The cache is invalidated even when nothing changed.
        """
        self.ensure_repo()
        try:
            with self._open_repo() as repo:
                logger.info("Updating package index")
                repo.remotes.origin.pull(ff_only=True)
        except git.GitCommandError as e:
            raise NetworkError(f"git pull failed: {e.stderr.strip() or e}", url=self.repo_url) from e
        except AttributeError as e:
            raise NetworkError(f"index repository has no origin remote: {self.repo_path}") from e
        finally:
            self.invalidate()

    def invalidate(self):
        """Drop cached entries and the version history."""
        self.cache.invalidate()
        self._history = None
        self._history_generation = -1

    def _load_entries(self) -> Dict[str, IndexEntry]:
        entries: Dict[str, IndexEntry] = {}
        if not self.paks_path.is_dir():
            return entries

        for path in sorted(self.paks_path.glob(f"*{MANIFEST_SUFFIX}")):
            rel = path.relative_to(self.repo_path)
            try:
                data = yaml.safe_load(path.read_bytes())
            except yaml.YAMLError as e:
                raise ValidationError(f"failed to parse {rel}: {e}") from e
            if not isinstance(data, dict):
                raise ValidationError(f"failed to parse {rel}: expected a mapping")
            try:
                entry = IndexEntry.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"validation failed for {rel}: {format_validation_errors(e)}") from e
            entries[path.name[:-len(MANIFEST_SUFFIX)]] = entry

        return entries

    def _entries(self) -> Dict[str, IndexEntry]:
        """Cached catalog, refreshed when stale. A bad entry fails the whole refresh."""
        entries = self.cache.get()
        if entries is None:
            self.ensure_repo()
            entries = self._load_entries()
            self.cache.set(entries)
            logger.debug(f"Loaded {len(entries)} catalog entries")
        return entries

    def search(self, query: str = "", limit: int = 20) -> List[SearchResult]:
        """
        Search the catalog.

        Args:
            query: Case-insensitive substring (name, description, tags); empty matches all
            limit: Maximum number of results

        Returns:
            Matching entries sorted by name
        """
        entries = self._entries()
        results = [
            entries[key].model_copy(update={"name": key}).to_search_result()
            for key in sorted(entries)
            if entries[key].matches(query)
        ]
        return results[:max(limit, 0)]

    def get_entry(self, name: str) -> IndexEntry:
        entries = self._entries()
        if name not in entries:
            raise NotFoundError("Package", name, message=f"pak {name} not found in index")
        return entries[name]

    def list_names(self) -> List[str]:
        return sorted(self._entries())

    def _version_history(self) -> VersionHistory:
        if self._history is None or self._history_generation != self.cache.generation:
            with self._open_repo() as repo:
                if (Path(repo.git_dir) / "shallow").exists():
                    logger.info("Fetching full index history")
                    try:
                        repo.git.fetch("--unshallow")
                    except git.GitCommandError as e:
                        raise NetworkError(
                            f"git fetch --unshallow failed: {e.stderr.strip() or e}", url=self.repo_url
                        ) from e
                try:
                    self._history = VersionHistory(self.paks_subdir).build(repo)
                except git.GitCommandError as e:
                    raise NetworkError(f"failed to walk index history: {e}") from e
            self._history_generation = self.cache.generation
        return self._history

    def resolve(self, target: str) -> bytes:
        """
        Manifest bytes for ``name`` or ``name@version``.

        A pinned version is read from ``<paks>/<name>@<version>.yaml`` when
        that file exists, otherwise from the catalog history.

        Raises:
            NotFoundError: unpinned name absent from the working tree
            VersionNotFoundError: pinned version absent from the history
        """
        name, version = split_versioned_name(target)
        validate_package_name(name)
        self.ensure_repo()

        if version is None:
            path = self.paks_path / f"{name}{MANIFEST_SUFFIX}"
            if not path.is_file():
                raise NotFoundError("Package", name, message=f"package {name} not found in index")
            return path.read_bytes()

        validate_package_name(version)
        literal = self.paks_path / f"{name}@{version}{MANIFEST_SUFFIX}"
        if literal.is_file():
            return literal.read_bytes()

        return self._version_history().read(name, version)
