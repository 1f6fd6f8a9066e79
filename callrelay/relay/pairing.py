"""Decide which changed paths are worth looking at, and find their sidecars."""

import logging
from pathlib import Path

from callrelay.schemas.relay import FilePair

logger = logging.getLogger(__name__)

PRIMARY_SUFFIX = ".mp3"
SIDECAR_SUFFIX = ".txt"


def is_eligible(path: Path, watched_root: Path) -> bool:
    """Return True for regular files below (not directly inside) the root."""
    path = Path(path)
    if path.parent == Path(watched_root):
        return False
    # is_file() already reports False for vanished paths
    return path.is_file()


def resolve_pair(path: Path) -> FilePair | None:
    """Return the recording/transcript pair for ``path`` if both halves exist.

    Either half may be the path that changed. A missing sibling is the normal
    state while the second file is still being written, so it is not an error.
    """
    path = Path(path)
    stem = path.stem
    if not stem:
        return None

    primary = path.parent / f"{stem}{PRIMARY_SUFFIX}"
    sidecar = path.parent / f"{stem}{SIDECAR_SUFFIX}"

    if primary.exists() and sidecar.exists():
        return FilePair(primary_path=primary, sidecar_path=sidecar)

    logger.debug("Pair incomplete for %s", stem)
    return None


def pair_key(path: str | Path) -> str:
    """The key a pair is tracked under, computed from either half's path.

    Matches ``FilePair.key`` for the pair ``path`` belongs to.
    """
    path = Path(path).absolute()
    return str(path.parent / path.stem)
