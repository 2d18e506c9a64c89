"""Remove half-written outputs belonging to one download call.

Only names derived from the caller's own output path are touched: fixed
container and partial-download variants, plus yt-dlp format fragments that
share the same unique stem. ``sweep_stale`` is the one exception: it ages
out any tokened output name left behind by an interrupted hand-off.
"""
from __future__ import annotations

import glob
import logging
import os
import re
import threading
import time
from typing import List, Optional

from mediagrab.verifier import ALTERNATE_EXTENSIONS

logger = logging.getLogger(__name__)

PARTIAL_SUFFIXES = (".part", ".ytdl", ".tmp", ".temp")
CONTAINER_EXTENSIONS = tuple(
    sorted({ext for ext in ALTERNATE_EXTENSIONS} | {alt for alts in ALTERNATE_EXTENSIONS.values() for alt in alts})
)
_FRAGMENT_RE = re.compile(r"\.f[\w-]+\.\w+(?:\.part|\.ytdl)?")
# ``{stem}_{uuid4 hex}`` followed by any extension chain.
_OUTPUT_NAME_RE = re.compile(r".+_[0-9a-f]{32}\..+")


def candidate_paths(path: str) -> List[str]:
    """Every fixed file name an attempt targeting ``path`` could have left behind."""
    base, _ = os.path.splitext(path)
    names = [path] + [f"{base}.{ext}" for ext in CONTAINER_EXTENSIONS]
    names += [name + suffix for name in list(names) for suffix in PARTIAL_SUFFIXES]
    names += [base + suffix for suffix in PARTIAL_SUFFIXES]
    return list(dict.fromkeys(names))


def format_fragments(path: str) -> List[str]:
    """Per-format streams yt-dlp writes before merging, e.g. ``name.f137.mp4.part``."""
    base, _ = os.path.splitext(path)
    return sorted(
        name for name in glob.glob(glob.escape(base) + ".f*") if _FRAGMENT_RE.fullmatch(name[len(base):])
    )


def cleanup(path: str, keep: Optional[str] = None) -> List[str]:
    """Delete ``path`` and its sibling variants, except ``keep``. Returns what was removed."""
    removed = []
    for candidate in candidate_paths(path) + format_fragments(path):
        if keep and os.path.abspath(candidate) == os.path.abspath(keep):
            continue
        try:
            os.remove(candidate)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not remove %s: %s", candidate, exc)
            continue
        removed.append(candidate)
    if removed:
        logger.debug("Removed %s", ", ".join(os.path.basename(name) for name in removed))
    return removed


def release_later(path: str, delay: float) -> threading.Timer:
    """Delete a handed-off file (and any siblings) once its grace period ends."""
    timer = threading.Timer(max(delay, 0.0), cleanup, args=(path,))
    timer.daemon = True
    timer.start()
    return timer


def sweep_stale(directory: str, max_age: float, now: Optional[float] = None) -> List[str]:
    """Delete download outputs older than ``max_age`` seconds.

    Catches files whose post-response release never ran, e.g. when the client
    disconnected mid-transfer. Only names carrying a per-call token are touched.
    """
    cutoff = (time.time() if now is None else now) - max_age
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return []
    removed = []
    for name in names:
        if not _OUTPUT_NAME_RE.fullmatch(name):
            continue
        path = os.path.join(directory, name)
        try:
            if not os.path.isfile(path) or os.path.getmtime(path) > cutoff:
                continue
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not remove stale %s: %s", path, exc)
            continue
        removed.append(path)
    if removed:
        logger.info("Swept %d stale download file(s) from %s", len(removed), directory)
    return removed
