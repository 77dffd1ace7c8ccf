# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Flake URL shapes.

Only the ref/rev component of an input URL is ever rewritten. Each supported
URL shape knows how to read that component and how to substitute it while
leaving every other character of the URL untouched:

- PATH:  github:NixOS/nixpkgs/nixos-25.05?dir=lib  (third path segment)
- QUERY: git+https://example.org/repo.git?ref=main&rev=abc  (ref=/rev= params)
- INDIRECT: nixpkgs/nixos-25.05  (registry id, then ref and/or rev)

Supporting another shape means adding an entry to URL_SHAPES.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .models import Reference

GIT_HOSTING_TYPES = ("github", "gitlab", "sourcehut")


class UrlShape(ABC):
    """One textual form of a flake input URL."""

    name: str = "abstract"

    @abstractmethod
    def matches(self, url: str) -> bool:
        """Whether this shape can read and rewrite `url`."""

    @abstractmethod
    def identifier(self, url: str) -> Optional[str]:
        """The ref or rev currently written in `url`, if any."""

    @abstractmethod
    def substitute(self, url: str, candidate: Reference) -> str:
        """Return `url` with its ref/rev component set to the candidate."""

    def carries(self, url: str, candidate: Reference) -> bool:
        """Whether `url` already points where the candidate does."""
        return self.identifier(url) == candidate.identifier


def _split_query(url: str) -> Tuple[str, str, str]:
    base, sep, query = url.partition("?")
    return base, sep, query


def _query_value(query: str, key: str) -> Optional[str]:
    for param in query.split("&"):
        name, _, value = param.partition("=")
        if name == key:
            return value
    return None


class PathStyleShape(UrlShape):
    """github:/gitlab:/sourcehut: owner/repo[/ref-or-rev][?params]"""

    name = "path"

    PATTERN = re.compile(
        r"^(?P<head>(?:github|gitlab|sourcehut):[^/?]+/[^/?]+)"
        r"(?:/(?P<segment>[^?]*))?"
        r"(?P<tail>\?.*)?$"
    )

    def matches(self, url: str) -> bool:
        match = self.PATTERN.match(url)
        if not match:
            return False
        if match.group("segment"):
            return True
        # github:o/r?ref=x is rewritten through its query instead
        query = (match.group("tail") or "")[1:]
        return _query_value(query, "ref") is None and _query_value(query, "rev") is None

    def identifier(self, url: str) -> Optional[str]:
        match = self.PATTERN.match(url)
        if not match:
            return None
        return match.group("segment") or None

    def substitute(self, url: str, candidate: Reference) -> str:
        match = self.PATTERN.match(url)
        if not match:
            raise ValueError(f"Not a path-style flake URL: {url}")
        return f"{match.group('head')}/{candidate.identifier}{match.group('tail') or ''}"


class QueryStyleShape(UrlShape):
    """Any URL whose ref/rev travel as query parameters."""

    name = "query"

    PREFIXES = ("git+", "hg+", "http://", "https://", "tarball+", "github:", "gitlab:", "sourcehut:")

    def matches(self, url: str) -> bool:
        return url.startswith(self.PREFIXES)

    def identifier(self, url: str) -> Optional[str]:
        _, _, query = _split_query(url)
        return _query_value(query, "rev") or _query_value(query, "ref")

    def carries(self, url: str, candidate: Reference) -> bool:
        _, _, query = _split_query(url)
        rev = _query_value(query, "rev")
        if candidate.rev:
            return rev == candidate.rev
        return rev is None and _query_value(query, "ref") == candidate.ref

    def substitute(self, url: str, candidate: Reference) -> str:
        base, _, query = _split_query(url)
        key = "rev" if candidate.rev else "ref"
        params = query.split("&") if query else []

        # a leftover rev= would keep the input pinned to the old commit
        if key == "ref":
            params = [param for param in params if param.partition("=")[0] != "rev"]

        for i, param in enumerate(params):
            if param.partition("=")[0] == key:
                params[i] = f"{key}={candidate.identifier}"
                break
        else:
            params.append(f"{key}={candidate.identifier}")

        return f"{base}?{'&'.join(params)}"


class IndirectShape(UrlShape):
    """Registry ids: [flake:]id[/ref-or-rev[/rev]]"""

    name = "indirect"

    PATTERN = re.compile(
        r"^(?P<head>(?:flake:)?[A-Za-z][A-Za-z0-9_-]*)"
        r"(?:/(?P<segments>[^?]*))?"
        r"(?P<tail>\?.*)?$"
    )

    def _segments(self, url: str) -> List[str]:
        match = self.PATTERN.match(url)
        if not match or not match.group("segments"):
            return []
        return match.group("segments").split("/")

    def matches(self, url: str) -> bool:
        match = self.PATTERN.match(url)
        return bool(match) and len(self._segments(url)) <= 2

    def identifier(self, url: str) -> Optional[str]:
        segments = self._segments(url)
        return segments[-1] if segments else None

    def carries(self, url: str, candidate: Reference) -> bool:
        segments = self._segments(url)
        if candidate.rev:
            return bool(segments) and segments[-1] == candidate.rev
        return segments == [candidate.ref]

    def substitute(self, url: str, candidate: Reference) -> str:
        match = self.PATTERN.match(url)
        if not match:
            raise ValueError(f"Not an indirect flake URL: {url}")

        segments = self._segments(url)
        if candidate.rev:
            # keep a declared branch in front of the new rev
            ref = segments[0] if segments and not is_rev(segments[0]) else None
            segments = [ref, candidate.rev] if ref else [candidate.rev]
        else:
            segments = [candidate.ref]
        return f"{match.group('head')}/{'/'.join(segments)}{match.group('tail') or ''}"


URL_SHAPES: Tuple[UrlShape, ...] = (PathStyleShape(), QueryStyleShape(), IndirectShape())

REV_PATTERN = re.compile(r"^[0-9a-f]{40}$")


def is_rev(value: str) -> bool:
    return bool(REV_PATTERN.match(value))


def shape_for(url: str) -> Optional[UrlShape]:
    """First shape in URL_SHAPES able to rewrite `url`."""
    for shape in URL_SHAPES:
        if shape.matches(url):
            return shape
    return None


def substitute_reference(url: str, candidate: Reference) -> str:
    """Rewrite the ref/rev component of `url`; raises ValueError if unsupported."""
    if not candidate.identifier:
        raise ValueError("Candidate reference has neither rev nor ref")
    shape = shape_for(url)
    if shape is None:
        raise ValueError(f"Unsupported flake URL: {url}")
    return shape.substitute(url, candidate)


def carries_candidate(url: str, candidate: Reference) -> bool:
    """Whether `url` already points at `candidate` (False for unsupported URLs)."""
    shape = shape_for(url)
    return shape.carries(url, candidate) if shape else False


def upstream_url(original: Dict[str, Any]) -> str:
    """Build the URL of an input's upstream from a lock file `original` node.

    Any rev is dropped so that resolving the URL yields the newest commit of
    the declared branch (or the default branch).
    """
    type_ = original.get("type")

    if type_ in GIT_HOSTING_TYPES:
        url = f"{type_}:{original['owner']}/{original['repo']}"
        if original.get("ref"):
            url += f"/{original['ref']}"
        if original.get("host"):
            url += f"?host={original['host']}"
        return url

    if type_ == "git":
        url = original["url"]
        if not url.startswith("git+"):
            url = f"git+{url}"
        if original.get("ref"):
            url += f"?ref={original['ref']}"
        return url

    if type_ == "indirect":
        url = f"flake:{original['id']}"
        if original.get("ref"):
            url += f"/{original['ref']}"
        return url

    raise ValueError(f"Type {type_} is not supported")
