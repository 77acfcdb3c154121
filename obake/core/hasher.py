"""Canonical hashing helpers for recipes, stage records and artifact sets."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from obake.models.shape import Shape

_CHUNK = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    """Stream a file through SHA-256."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def recipe_hash(shape: Shape) -> str:
    """SHA-256 of the canonical recipe.

    Two recipes hash equal exactly when every field that influences the
    build (pin, steps, allow-list, dependencies, fixups, entrypoint) is equal.
    """
    return sha256_hex(canonical_json_bytes(shape.model_dump(mode="json")))


def compute_stage_hash(stage: str, payload: Mapping[str, Any]) -> str:
    """SHA-256 of canonical(stage + payload), used for stage inputs and outputs."""
    return sha256_hex(canonical_json_bytes({"stage": stage, "payload": dict(payload)}))


def path_digest(path: Path) -> str:
    """Digest of one runtime-root entry; symlinks hash to their target text."""
    if path.is_symlink():
        return f"symlink:{os.readlink(path)}"
    return file_sha256(path)


def artifact_digest(files: Mapping[str, str]) -> str:
    """SHA-256 over sorted ``(path, digest)`` pairs.

    Identical artifact sets yield identical digests regardless of the
    order in which files were produced.
    """
    return sha256_hex(canonical_json_bytes(sorted(files.items())))
