# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Target Locator

Produces the ordered list of FlakeTargets for a session, either from an
explicit `<path>#<input>` descriptor or from the store-root scanner's
candidate directories.
"""

import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import TargetNotFoundError
from .logger import get_logger
from .models import FLAKE_FILE, FlakeTarget, TargetLabel

logger = get_logger("locator")


def parse_descriptor(descriptor: str) -> Tuple[Path, Optional[str]]:
    """Split `<path>[#<input>]`; an empty path means the current directory."""
    path, sep, input_name = descriptor.rpartition("#")
    if not sep:
        path, input_name = descriptor, ""
    return Path(path or ".").expanduser(), input_name or None


def resolve_explicit(descriptor: str, input_name: Optional[str] = None) -> FlakeTarget:
    """
    Validate an explicit descriptor.

    The input name is not checked against the flake here; the oracle
    raises InputNotFoundError for unknown inputs.

    Raises:
        TargetNotFoundError: Path is missing or holds no flake.nix
    """
    path, descriptor_input = parse_descriptor(descriptor)

    if path.name == FLAKE_FILE and path.is_file():
        path = path.parent

    if not path.is_dir():
        raise TargetNotFoundError(
            f"{path} is not a directory", directory=str(path), input_name=descriptor_input
        )
    if not (path / FLAKE_FILE).is_file():
        raise TargetNotFoundError(
            f"{path} does not contain {FLAKE_FILE}",
            directory=str(path),
            input_name=descriptor_input,
        )

    return FlakeTarget(
        directory=path.resolve(),
        input_name=descriptor_input or input_name,
        label=TargetLabel.EXPLICIT,
    )


def discover(
    candidates: Iterable[Sequence],
    input_name: Optional[str] = None,
) -> List[FlakeTarget]:
    """
    Filter scanner candidates down to flakes.

    Candidates are (directory, label) pairs, optionally followed by the
    gcroot link target that produced them. Directories without flake.nix
    are dropped, symlinked duplicates collapse onto their real path (a
    direnv label wins, since it enables the environment reload, and the
    gcroots of all duplicates are kept), and the result is sorted by path.
    """
    found: Dict[Path, TargetLabel] = {}
    roots: Dict[Path, List[Path]] = {}

    for directory, label, *rest in candidates:
        if not (directory / FLAKE_FILE).is_file():
            logger.debug(f"No {FLAKE_FILE} in {directory}")
            continue

        real = Path(os.path.realpath(directory))
        if real not in found or label == TargetLabel.DIRENV:
            found[real] = label
        roots.setdefault(real, []).extend(root for root in rest if root is not None)

    return [
        FlakeTarget(
            directory=directory,
            input_name=input_name,
            label=found[directory],
            gcroots=tuple(roots[directory]),
        )
        for directory in sorted(found)
    ]


def locate(
    descriptor: Optional[str],
    candidates: Iterable[Sequence] = (),
    input_name: Optional[str] = None,
) -> List[FlakeTarget]:
    """Explicit descriptor if given, otherwise discovery over `candidates`."""
    if descriptor:
        return [resolve_explicit(descriptor, input_name)]
    return discover(candidates, input_name)
