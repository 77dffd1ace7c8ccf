# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Patch Generator

Locates an input's url declaration in flake.nix by targeted text matching
(no Nix parsing) and turns UpdateProposals into line hunks.

Supported declaration shapes (DECLARATION_MATCHERS):

    inputs.nixpkgs.url = "github:NixOS/nixpkgs/nixos-25.05";
    nixpkgs.url = "github:NixOS/nixpkgs/nixos-25.05";        # inside inputs = { }
    nixpkgs = { url = "github:NixOS/nixpkgs/nixos-25.05"; };
    nixpkgs = {
      url = "github:NixOS/nixpkgs/nixos-25.05";
    };
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .exceptions import PatternNotFoundError
from .flakeref import shape_for
from .logger import get_logger
from .models import Hunk, UpdateProposal

logger = get_logger("patch")

URL_VALUE = r'"(?P<url>[^"]*)"'


def _name_pattern(input_name: str) -> str:
    # attribute names may be written quoted: inputs."nix-darwin".url
    escaped = re.escape(input_name)
    return rf'(?:{escaped}|"{escaped}")'


def _is_comment(line: str) -> bool:
    return line.lstrip().startswith("#")


@dataclass(frozen=True)
class Declaration:
    """Position of one quoted input URL inside flake.nix."""

    input_name: str
    line: int
    url_start: int
    url_end: int
    url: str

    def rewrite(self, text: str, new_url: str) -> str:
        return text[:self.url_start] + new_url + text[self.url_end:]


# =============================================================================
# Declaration matchers
# =============================================================================

class DeclarationMatcher(ABC):
    """Finds one shape of url declaration."""

    @abstractmethod
    def find(self, lines: Sequence[str], input_name: str) -> List[Declaration]:
        ...


class AttributeMatcher(DeclarationMatcher):
    """A declaration contained in a single line."""

    def __init__(self, template: str):
        self.template = template

    def find(self, lines: Sequence[str], input_name: str) -> List[Declaration]:
        pattern = re.compile(self.template.format(name=_name_pattern(input_name), url=URL_VALUE))
        found = []
        for i, line in enumerate(lines):
            if _is_comment(line):
                continue
            match = pattern.match(line)
            if match:
                found.append(
                    Declaration(input_name, i, match.start("url"), match.end("url"), match.group("url"))
                )
        return found


class BlockMatcher(DeclarationMatcher):
    """`url = "..."` on its own line directly inside `<name> = { ... }`."""

    URL_LINE = re.compile(r"^\s*url\s*=\s*" + URL_VALUE)

    def find(self, lines: Sequence[str], input_name: str) -> List[Declaration]:
        opener = re.compile(
            r"^\s*(?:inputs\.)?" + _name_pattern(input_name) + r"\s*=\s*\{\s*(?:#.*)?$"
        )
        found = []
        depth = 0

        for i, line in enumerate(lines):
            if _is_comment(line):
                continue

            if depth == 0:
                if opener.match(line):
                    depth = 1
                continue

            if depth == 1:
                match = self.URL_LINE.match(line)
                if match:
                    found.append(
                        Declaration(input_name, i, match.start("url"), match.end("url"), match.group("url"))
                    )

            code = line.split("#", 1)[0]
            depth += code.count("{") - code.count("}")
            depth = max(depth, 0)

        return found


DECLARATION_MATCHERS: Tuple[DeclarationMatcher, ...] = (
    AttributeMatcher(r"^\s*(?:inputs\.)?{name}\.url\s*=\s*{url}"),
    AttributeMatcher(r"^\s*(?:inputs\.)?{name}\s*=\s*\{{[^}}]*?\burl\s*=\s*{url}"),
    BlockMatcher(),
)


def find_declarations(lines: Sequence[str], input_name: str) -> List[Declaration]:
    """All url declarations of `input_name`, in line order."""
    by_line = {}
    for matcher in DECLARATION_MATCHERS:
        for declaration in matcher.find(lines, input_name):
            by_line.setdefault(declaration.line, declaration)
    return [by_line[line] for line in sorted(by_line)]


def find_commented_declarations(lines: Sequence[str], input_name: str) -> List[int]:
    """Line indexes of commented-out definitions of the input."""
    pattern = re.compile(
        r"#[ \t]*(?:inputs\.)?" + _name_pattern(input_name) + r"(?:\.url)?[ \t]*="
    )
    return [i for i, line in enumerate(lines) if pattern.search(line)]


# =============================================================================
# Hunk generation
# =============================================================================

def generate_hunks(lines: Sequence[str], proposals: Iterable[UpdateProposal]) -> List[Hunk]:
    """
    Build the hunks that repoint every proposal's input to its candidate.

    Every declaration is located before any hunk is built, so a missing or
    unsupported declaration fails the whole file without a partial result.
    Declarations already carrying the candidate produce no hunk, and neither
    do lock-only proposals (inputs that follow the registry).

    Raises:
        PatternNotFoundError: A proposal's input has no editable declaration
    """
    changes: List[Tuple[int, str, str, str]] = []

    for proposal in proposals:
        if proposal.no_change or proposal.candidate is None or proposal.lock_only:
            continue

        name = proposal.input_name
        declarations = find_declarations(lines, name)
        if not declarations:
            raise PatternNotFoundError(
                f"No url declaration for input {name} found in flake.nix", input_name=name
            )

        for declaration in declarations:
            shape = shape_for(declaration.url)
            if shape is None:
                raise PatternNotFoundError(
                    f"Unsupported url {declaration.url!r} for input {name}",
                    input_name=name,
                    details={"line": declaration.line + 1},
                )

            if shape.carries(declaration.url, proposal.candidate):
                logger.debug(f"{name} already declares {proposal.candidate.identifier}")
                continue

            original = lines[declaration.line]
            replacement = declaration.rewrite(
                original, shape.substitute(declaration.url, proposal.candidate)
            )
            if replacement == original:
                continue
            changes.append((declaration.line, original, replacement, name))

    changes.sort(key=lambda change: change[0])
    total = len(changes)
    return [
        Hunk(
            start=line,
            original_lines=(original,),
            replacement_lines=(replacement,),
            index=index,
            total=total,
            input_name=name,
        )
        for index, (line, original, replacement, name) in enumerate(changes, 1)
    ]


def apply_hunks(lines: Sequence[str], hunks: Iterable[Hunk]) -> List[str]:
    """Apply hunks produced for `lines` (ascending, non-overlapping)."""
    result = list(lines)
    offset = 0
    for hunk in hunks:
        start = hunk.start + offset
        result[start:start + len(hunk.original_lines)] = list(hunk.replacement_lines)
        offset += len(hunk.replacement_lines) - len(hunk.original_lines)
    return result


def hunk_view(
    buffer: Sequence[str], hunk: Hunk, offset: int = 0, context: int = 3
) -> List[Tuple[str, str]]:
    """
    Unified-diff style rows for displaying `hunk` against the current buffer.

    Returns (kind, text) pairs where kind is "@", " ", "-" or "+"; text has
    its line ending stripped.
    """
    start = hunk.start + offset
    end = hunk.end + offset
    before = buffer[max(start - context, 0):start]
    after = buffer[end:end + context]

    first = start - len(before) + 1
    old_count = len(before) + len(hunk.original_lines) + len(after)
    new_count = len(before) + len(hunk.replacement_lines) + len(after)

    rows = [("@", f"@@ -{first},{old_count} +{first},{new_count} @@")]
    rows += [(" ", line.rstrip("\r\n")) for line in before]
    rows += [("-", line.rstrip("\r\n")) for line in hunk.original_lines]
    rows += [("+", line.rstrip("\r\n")) for line in hunk.replacement_lines]
    rows += [(" ", line.rstrip("\r\n")) for line in after]
    return rows
