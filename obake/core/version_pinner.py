"""Version pinning — one version of a shape maps to exactly one pinned source.

Published images are immutable, so a shape version can be built once.  The
pinner checks the images directory before a build starts and tells apart a
plain rebuild from a recipe whose pin drifted under an unchanged version.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from obake.core.assembler import ImageExistsError, read_manifest
from obake.models.manifest import MANIFEST_FILE, RuntimeManifest
from obake.models.shape import Shape

logger = logging.getLogger(__name__)


class PinDriftError(RuntimeError):
    """Raised when a published version was built from a different pin."""


class VersionPinner:
    """Guards ``images_dir`` against rebuilding or re-pinning a version."""

    def __init__(self, images_dir: Path) -> None:
        self._images_dir = Path(images_dir)

    def published(self, shape: Shape) -> RuntimeManifest | None:
        """Manifest of the already published image for *shape*, if any."""
        image_dir = self._images_dir / shape.image_name
        if not (image_dir / MANIFEST_FILE).is_file():
            return None
        try:
            return read_manifest(image_dir)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("%s: unreadable manifest: %s", image_dir, exc)
            return None

    def check_drift(self, shape: Shape, recipe_hash: str) -> list[str]:
        """Differences between *shape* and its published image.  Empty when unpublished."""
        manifest = self.published(shape)
        if manifest is None:
            return []
        drifts: list[str] = []
        if manifest.reference.pin != shape.reference.pin:
            drifts.append(
                f"pin: recorded={manifest.reference.pin!r}, current={shape.reference.pin!r}"
            )
        if manifest.recipe_hash != recipe_hash:
            drifts.append(
                f"recipe: recorded={manifest.recipe_hash[:12]}, current={recipe_hash[:12]}"
            )
        return drifts

    def ensure_unpublished(self, shape: Shape, recipe_hash: str) -> None:
        """Raise unless *shape*'s version is free to be built.

        ``PinDriftError`` when the published image used another pin;
        ``ImageExistsError`` otherwise.
        """
        if self.published(shape) is None and not (self._images_dir / shape.image_name).exists():
            return
        drifts = self.check_drift(shape, recipe_hash)
        if any(drift.startswith("pin:") for drift in drifts):
            raise PinDriftError(
                f"{shape.image_name} was published from a different source: "
                f"{'; '.join(drifts)}. Bump the version to re-pin."
            )
        detail = f" ({'; '.join(drifts)})" if drifts else ""
        raise ImageExistsError(
            f"image {shape.image_name} is already published{detail}; images are immutable"
        )
