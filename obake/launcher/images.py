"""Published images on the host."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from obake.core.assembler import read_manifest
from obake.models.manifest import MANIFEST_FILE, ROOTFS_DIR, RuntimeManifest

logger = logging.getLogger(__name__)


class ImageInfo(BaseModel):
    """One runnable image: an obake image directory or a ``.sif`` file."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    kind: str  # "obake" or "sif"
    manifest: RuntimeManifest | None = None

    @property
    def run_target(self) -> Path:
        """What the container runtime is pointed at."""
        if self.kind == "obake":
            return self.path / ROOTFS_DIR
        return self.path


def image_info(path: Path) -> ImageInfo | None:
    """Describe *path* if it is an image, else ``None``."""
    path = Path(path)
    if path.is_dir() and (path / MANIFEST_FILE).is_file():
        return ImageInfo(name=path.name, path=path, kind="obake", manifest=read_manifest(path))
    if path.is_file() and path.suffix == ".sif":
        return ImageInfo(name=path.stem, path=path, kind="sif")
    return None


def list_images(images_dir: Path) -> list[ImageInfo]:
    """Every image in *images_dir*, sorted by name.

    Raises ``FileNotFoundError`` when the directory cannot be read or holds
    no image.
    """
    images_dir = Path(images_dir)
    logger.debug("images directory: %s", images_dir)
    try:
        entries = sorted(images_dir.iterdir())
    except OSError as exc:
        raise FileNotFoundError(f"Failed to read images directory: {images_dir}") from exc

    images = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        info = image_info(entry)
        if info is not None:
            logger.debug("image: %s", entry)
            images.append(info)
    if not images:
        raise FileNotFoundError(f"No images found in directory: {images_dir}")
    return images


def resolve_image(image: str, images_dir: Path) -> ImageInfo:
    """Resolve a setup's ``image`` value (a name or a path) to an image."""
    candidates = [Path(image)] if Path(image).is_absolute() else [
        Path(images_dir) / image,
        Path(images_dir) / f"{image}.sif",
    ]
    for candidate in candidates:
        info = image_info(candidate)
        if info is not None:
            return info
    raise FileNotFoundError(f"image {image!r} not found in {images_dir}")
