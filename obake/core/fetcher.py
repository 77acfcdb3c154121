"""Artifact Fetcher — resolves a pinned reference to a read-only source tree.

Source trees land at a deterministic location derived from the shape and its
pin: ``{cache_dir}/sources/{name}-{version}-{pin digest[:12]}``.  A tree is
written under a temporary name and renamed into place only after every check
passed, so a half-fetched tree is never visible.

Failures (network, checksum mismatch, unknown tag or commit) raise
``FetchError`` and are never retried here; re-running the build is the
caller's decision.
"""

from __future__ import annotations

import json
import logging
import shutil
import tarfile
import urllib.error
import urllib.request
import uuid
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from obake.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from obake.core.fsutil import make_read_only, remove_tree
from obake.core.hasher import sha256_hex
from obake.core.runner import CommandResult, CommandRunner, SubprocessRunner
from obake.models.shape import PinnedReference, ReferenceKind, Shape

logger = logging.getLogger(__name__)

_MARKER_SUFFIX = ".source.json"


class FetchError(RuntimeError):
    """Raised when a pinned source cannot be fetched or does not verify."""


class SourceTree(BaseModel):
    """A fetched, verified, read-only source tree."""

    model_config = ConfigDict(frozen=True)

    shape: str
    version: str
    path: Path
    pin: str
    resolved: str  # sha256 of the tarball, or the checked-out commit
    cached: bool = False


class ArtifactFetcher:
    """Fetches pinned upstream sources into the local cache.

    Parameters
    ----------
    cache_dir:
        Holds ``sources/`` (extracted trees) and ``blobs/`` (the
        content-addressed store of downloaded archives).
    runner:
        Runs ``git``; defaults to a :class:`SubprocessRunner`.
    timeout:
        Download timeout in seconds.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        runner: CommandRunner | None = None,
        timeout: float = 300,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sources = Path(cache_dir) / "sources"
        self._sources.mkdir(parents=True, exist_ok=True)
        self._store = ContentAddressedStore(Path(cache_dir) / "blobs")
        self._runner = runner or SubprocessRunner(timeout=timeout)
        self._timeout = timeout
        self._log = logger or logging.getLogger(__name__)

    @property
    def store(self) -> ContentAddressedStore:
        return self._store

    def source_path(self, shape: Shape) -> Path:
        """Deterministic location of the shape's source tree."""
        key = sha256_hex(f"{shape.reference.url}\n{shape.reference.pin}".encode())[:12]
        return self._sources / f"{shape.image_name}-{key}"

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, shape: Shape) -> SourceTree:
        """Return the verified source tree for *shape*, fetching it if needed."""
        dest = self.source_path(shape)
        marker = dest.with_name(dest.name + _MARKER_SUFFIX)
        if dest.is_dir() and marker.is_file():
            recorded = json.loads(marker.read_text())
            self._log.info("%s: using cached source %s", shape.image_name, dest)
            return SourceTree(
                shape=shape.name,
                version=shape.version,
                path=dest,
                pin=shape.reference.pin,
                resolved=recorded["resolved"],
                cached=True,
            )

        staging = self._sources / f".{dest.name}.{uuid.uuid4().hex[:8]}"
        try:
            if shape.reference.kind == ReferenceKind.TARBALL:
                resolved = self._fetch_tarball(shape.reference, staging)
            else:
                resolved = self._fetch_git(shape.reference, staging)
            make_read_only(staging)
            if dest.exists():
                remove_tree(dest)
            staging.rename(dest)
            marker.write_text(
                json.dumps({"pin": shape.reference.pin, "resolved": resolved}, sort_keys=True)
            )
        except FetchError:
            raise
        except OSError as exc:
            raise FetchError(f"{shape.image_name}: cannot prepare source tree: {exc}") from exc
        finally:
            if staging.exists():
                remove_tree(staging)

        self._log.info("%s: fetched %s (%s)", shape.image_name, shape.reference.url, resolved)
        return SourceTree(
            shape=shape.name,
            version=shape.version,
            path=dest,
            pin=shape.reference.pin,
            resolved=resolved,
        )

    # ------------------------------------------------------------------
    # Tarballs
    # ------------------------------------------------------------------

    def _download(self, url: str, target: Path) -> None:
        self._log.debug("downloading %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self._timeout) as resp, open(
                target, "wb"
            ) as out:
                shutil.copyfileobj(resp, out)
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise FetchError(f"cannot download {url}: {exc}") from exc

    def _fetch_tarball(self, ref: PinnedReference, staging: Path) -> str:
        address = f"sha256:{ref.sha256}"
        if not self._store.verify(address):
            download = staging.with_name(staging.name + ".download")
            try:
                self._download(ref.url, download)
                self._store.add_file(download, expected=address)
            except ArtifactIntegrityError as exc:
                raise FetchError(f"{ref.url}: {exc}") from exc
            finally:
                if download.exists():
                    download.unlink()
        else:
            self._log.debug("archive %s already in store", address)

        extract = staging.with_name(staging.name + ".extract")
        try:
            extract.mkdir(parents=True)
            with tarfile.open(self._store.path_for(address)) as tar:
                tar.extractall(extract, filter="data")
            entries = list(extract.iterdir())
            root = entries[0] if len(entries) == 1 and entries[0].is_dir() else extract
            root.rename(staging)
        except tarfile.TarError as exc:
            raise FetchError(f"{ref.url}: cannot extract archive: {exc}") from exc
        finally:
            if extract.exists():
                remove_tree(extract)
        return ref.sha256 or ""

    # ------------------------------------------------------------------
    # Git
    # ------------------------------------------------------------------

    def _git(self, *args: str) -> CommandResult:
        result = self._runner.run(["git", *args])
        if not result.ok:
            raise FetchError(f"git {' '.join(args)} failed ({result.returncode}):\n{result.tail()}")
        return result

    def _fetch_git(self, ref: PinnedReference, staging: Path) -> str:
        self._git("clone", "--quiet", "--no-checkout", ref.url, str(staging))
        repo = str(staging)

        tag_commit = None
        if ref.tag:
            result = self._runner.run(
                ["git", "-C", repo, "rev-parse", "--verify", "--quiet", f"refs/tags/{ref.tag}^{{commit}}"]
            )
            if not result.ok or not result.output.strip():
                raise FetchError(f"{ref.url}: tag {ref.tag!r} not found")
            tag_commit = result.output.strip().splitlines()[-1]
            if ref.commit and tag_commit != ref.commit:
                raise FetchError(
                    f"{ref.url}: tag {ref.tag!r} resolves to {tag_commit}, pinned {ref.commit}"
                )

        target = ref.commit or tag_commit or ""
        self._git("-C", repo, "checkout", "--quiet", "--detach", target)
        head = self._git("-C", repo, "rev-parse", "HEAD").output.strip().splitlines()[-1]
        if head != target:
            raise FetchError(f"{ref.url}: checked out {head}, pinned {target}")
        if ref.submodules:
            self._git("-C", repo, "submodule", "update", "--init", "--recursive", "--quiet")

        remove_tree(staging / ".git")
        return head
