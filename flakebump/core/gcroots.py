# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Store-root scanner.

Reads the automatic garbage-collector roots and maps each link target to
the flake directory that created it:

    /home/me/proj/.direnv/flake-profile-...  ->  /home/me/proj  (direnv)
    /home/me/proj/result                      ->  /home/me/proj  (result)

Anything else (profiles, ad-hoc roots) is ignored.
"""

import os
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from .logger import get_logger
from .models import TargetLabel

logger = get_logger("gcroots")

Candidate = Tuple[Path, TargetLabel]


class RootCandidate(NamedTuple):
    """A flake directory found behind a gcroot, and the link target keeping it alive."""

    directory: Path
    label: TargetLabel
    root: Optional[Path] = None


def classify_root(link_target: Path) -> Optional[Candidate]:
    """Map a gcroot's link target to (flake directory, label)."""
    for ancestor in (link_target, *link_target.parents):
        if ancestor.name == ".direnv":
            return ancestor.parent, TargetLabel.DIRENV

    if link_target.name == "result" or link_target.name.startswith("result-"):
        return link_target.parent, TargetLabel.RESULT

    return None


def scan_gcroots(gcroots_dir: Path) -> List[RootCandidate]:
    """List candidate flake directories behind the gcroots in `gcroots_dir`.

    Dangling links are skipped; unreadable entries are logged and skipped.
    """
    try:
        entries = sorted(os.scandir(gcroots_dir), key=lambda entry: entry.name)
    except OSError as e:
        logger.error(f"Failed to read gcroots directory {gcroots_dir}: {e}")
        return []

    candidates: List[RootCandidate] = []
    for entry in entries:
        try:
            link_target = Path(os.readlink(entry.path))
        except OSError as e:
            logger.warning(f"Failed to process gcroot {entry.path}: {e}")
            continue

        if not link_target.is_absolute():
            link_target = Path(gcroots_dir) / link_target

        if not link_target.exists() and not link_target.is_symlink():
            logger.debug(f"Skipping dangling gcroot {entry.path} -> {link_target}")
            continue

        candidate = classify_root(link_target)
        if candidate is None:
            logger.debug(f"Ignoring gcroot {entry.path} -> {link_target}")
            continue
        candidates.append(RootCandidate(*candidate, root=link_target))

    return candidates
