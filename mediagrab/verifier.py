"""Decide whether an attempt produced a usable file."""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

# Container an extractor may write instead of the one we asked for.
ALTERNATE_EXTENSIONS: Dict[str, Tuple[str, ...]] = {
    "mp4": ("webm", "mkv", "mov", "m4v"),
    "mp3": ("m4a", "webm", "opus", "ogg", "aac", "wav"),
    "m4a": ("mp4", "webm", "opus"),
    "webm": ("mkv", "mp4"),
}

DEFAULT_MIN_BYTES = 1000


def sibling_paths(expected_path: str) -> List[str]:
    base, ext = os.path.splitext(expected_path)
    return [f"{base}.{alt}" for alt in ALTERNATE_EXTENSIONS.get(ext.lstrip(".").lower(), ())]


def _large_enough(path: str, min_bytes: int) -> bool:
    return os.path.isfile(path) and os.path.getsize(path) > min_bytes


def verify(expected_path: str, min_bytes: int = DEFAULT_MIN_BYTES) -> bool:
    """Accept ``expected_path`` if it (or a renamed sibling) is larger than ``min_bytes``.

    Missing files are an ordinary outcome here, so this never raises.
    """
    try:
        if not _large_enough(expected_path, min_bytes):
            for sibling in sibling_paths(expected_path):
                if _large_enough(sibling, min_bytes):
                    logger.info("Renaming %s to %s", os.path.basename(sibling), os.path.basename(expected_path))
                    os.replace(sibling, expected_path)
                    break
        if not os.path.isfile(expected_path):
            return False
        size = os.path.getsize(expected_path)
    except OSError as exc:
        logger.warning("Could not verify %s: %s", expected_path, exc)
        return False
    if size <= min_bytes:
        logger.info("Rejecting %s: %d bytes is below the %d byte minimum", os.path.basename(expected_path), size, min_bytes)
        return False
    return True
