# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Data model shared by the locator, oracle, patch generator and apply engine.

- FlakeTarget: one flake directory plus an optional input name
- Reference: a revision and/or branch with its last-modified time
- UpdateProposal: current vs candidate reference for one input
- Hunk: one line-based change to flake.nix
- SessionState: mutable per-target working state of the apply engine
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set, Tuple

FLAKE_FILE = "flake.nix"
LOCK_FILE = "flake.lock"


# =============================================================================
# Targets
# =============================================================================

class TargetLabel(str, Enum):
    """How a flake target was discovered."""
    EXPLICIT = "explicit"   # Named on the command line
    DIRENV = "direnv"       # Linked from a .direnv gcroot
    RESULT = "result"       # Linked from a ./result build symlink


@dataclass(frozen=True)
class FlakeTarget:
    """A flake directory and, optionally, the single input to look at."""

    directory: Path
    input_name: Optional[str] = None
    label: TargetLabel = TargetLabel.EXPLICIT
    gcroots: Tuple[Path, ...] = ()  # links that keep this flake's outputs alive

    @property
    def flake_nix(self) -> Path:
        return self.directory / FLAKE_FILE

    @property
    def flake_lock(self) -> Path:
        return self.directory / LOCK_FILE

    @property
    def uses_direnv(self) -> bool:
        return self.label == TargetLabel.DIRENV or (self.directory / ".envrc").exists()

    @property
    def in_git_repo(self) -> bool:
        # .git is a file inside worktrees and submodules
        return any((path / ".git").exists() for path in (self.directory, *self.directory.parents))

    def __str__(self) -> str:
        if self.input_name:
            return f"{self.directory}#{self.input_name}"
        return str(self.directory)


# =============================================================================
# References and proposals
# =============================================================================

def humanize_age(last_modified: Optional[int], now: Optional[float] = None) -> str:
    """Render a unix timestamp as "3 days ago"."""
    if last_modified is None:
        return "unknown"

    seconds = int((time.time() if now is None else now) - last_modified)
    if seconds < 60:
        return "just now"

    for unit, size in (
        ("year", 365 * 86400),
        ("month", 30 * 86400),
        ("day", 86400),
        ("hour", 3600),
        ("minute", 60),
    ):
        count = seconds // size
        if count:
            return f"{count} {unit}{'s' if count != 1 else ''} ago"

    return "just now"


@dataclass(frozen=True)
class Reference:
    """A pinned or candidate position of an input.

    rev is a commit hash, ref a branch or tag name. Either may be absent.
    """

    rev: Optional[str] = None
    ref: Optional[str] = None
    last_modified: Optional[int] = None
    pinned: bool = False  # the declaration itself names the rev

    @property
    def identifier(self) -> Optional[str]:
        """The value written into a flake URL: the rev when known, else the ref."""
        return self.rev or self.ref

    @property
    def age(self) -> str:
        return humanize_age(self.last_modified)

    def same_as(self, current: "Reference") -> bool:
        """Whether this candidate already describes `current`.

        A candidate carrying a rev is compared with the locked rev, a
        branch-only candidate with the declared branch, which it never
        matches while the declaration still pins a rev.
        """
        if self.rev:
            return self.rev == current.rev
        return not current.pinned and self.ref == current.ref

    def __str__(self) -> str:
        short_rev = self.rev[:12] if self.rev else None
        if self.ref and short_rev:
            return f"{self.ref}@{short_rev}"
        return self.ref or short_rev or "?"


@dataclass(frozen=True)
class UpdateProposal:
    """Proposed change of one input from `current` to `candidate`."""

    input_name: str
    current: Reference
    candidate: Optional[Reference] = None
    no_change: bool = False
    # The declaration names no ref/rev, so only `nix flake update` moves it
    lock_only: bool = False

    def __post_init__(self):
        if self.candidate is None and not self.no_change:
            raise ValueError(f"Proposal for {self.input_name} has no candidate")
        if self.candidate is not None and self.candidate.same_as(self.current):
            raise ValueError(
                f"Candidate {self.candidate} for {self.input_name} equals the current reference"
            )

    @classmethod
    def up_to_date(cls, input_name: str, current: Reference) -> "UpdateProposal":
        return cls(input_name=input_name, current=current, no_change=True)


# =============================================================================
# Hunks and decisions
# =============================================================================

@dataclass(frozen=True)
class Hunk:
    """A contiguous replacement of lines in flake.nix.

    Lines keep their original line endings so that joining the buffer back
    together reproduces the file byte for byte.
    """

    start: int                       # zero-based line index in the original file
    original_lines: Tuple[str, ...]
    replacement_lines: Tuple[str, ...]
    index: int                       # 1-based position among the file's hunks
    total: int
    input_name: str

    @property
    def end(self) -> int:
        return self.start + len(self.original_lines)

    @property
    def progress(self) -> str:
        return f"({self.index}/{self.total})"


class ApplyDecision(str, Enum):
    """Outcome for one hunk."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    EDITED = "edited"
    ABORTED = "aborted"

    @property
    def mutates(self) -> bool:
        return self in (ApplyDecision.APPLIED, ApplyDecision.EDITED)


class FollowOnAction(str, Enum):
    """Actions offered after review; the value is the prompt token."""
    WRITE = "write"
    LOCK = "lock"
    DIRENV = "direnv"
    DIFF = "diff"
    COMMIT = "commit"
    UPDATE = "up"
    DELETE_GCROOTS = "dg"
    SHELL = "sh"


@dataclass
class SessionState:
    """Working state of one target, owned by a single ApplyEngine."""

    lines: List[str]
    write_enabled: bool
    decisions: List[Tuple[Hunk, ApplyDecision]] = field(default_factory=list)
    offset: int = 0
    completed_actions: Set[FollowOnAction] = field(default_factory=set)
    errors: List[Exception] = field(default_factory=list)
    aborted: bool = False
    saved: bool = False

    @property
    def any_applied(self) -> bool:
        return any(decision.mutates for _, decision in self.decisions)

    @property
    def content(self) -> str:
        return "".join(self.lines)

    def record(self, hunk: Hunk, decision: ApplyDecision) -> None:
        self.decisions.append((hunk, decision))

    def replace(self, hunk: Hunk, replacement: List[str]) -> None:
        """Swap the hunk's original lines for `replacement` in the buffer."""
        start = hunk.start + self.offset
        self.lines[start:start + len(hunk.original_lines)] = replacement
        self.offset += len(replacement) - len(hunk.original_lines)
