"""obake: reproducible runtime images for a live-coding audio rig.

Each *shape* (a synthesis server, a device daemon, a plugin host) is built
from a pinned upstream source in a throwaway environment; only allow-listed
artifacts and declared runtime packages reach its image, which always runs
through the same ``obake-entrypoint``.  The ``obake`` CLI builds and launches
shapes; ``siren`` is the control plane of the live-coding shell.
"""

__version__ = "0.1.0"
__description__ = "Reproducible runtime images and launcher for a live-coding audio rig"

__all__ = ["__version__"]
