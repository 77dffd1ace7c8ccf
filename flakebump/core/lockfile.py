# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Reading the pinned state of a flake's inputs from flake.lock."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .exceptions import InputNotFoundError, OracleUnavailableError
from .models import Reference

SUPPORTED_VERSIONS = (5, 6, 7)
SUPPORTED_TYPES = ("github", "gitlab", "sourcehut", "git", "indirect")


@dataclass(frozen=True)
class LockedInput:
    """One direct input of the root flake as recorded in flake.lock."""

    name: str
    type: str
    original: Dict[str, Any] = field(default_factory=dict)
    locked: Dict[str, Any] = field(default_factory=dict)
    follows: Optional[List[str]] = None

    @property
    def supported(self) -> bool:
        return self.follows is None and self.type in SUPPORTED_TYPES

    @property
    def registry_id(self) -> str:
        return self.original.get("id", self.name) if self.type == "indirect" else self.name

    @property
    def follows_registry(self) -> bool:
        """An indirect input without ref or rev: `nix flake update` re-resolves it."""
        return self.type == "indirect" and not self.original.get("ref") and not self.original.get("rev")

    @property
    def current(self) -> Reference:
        return Reference(
            rev=self.locked.get("rev"),
            ref=self.original.get("ref"),
            last_modified=self.locked.get("lastModified"),
            pinned=bool(self.original.get("rev")),
        )


class FlakeLockfile:
    """Parsed flake.lock of one flake directory."""

    def __init__(self, path: Path, data: Dict[str, Any]):
        self.path = path
        self.data = data

        version = data.get("version")
        if version not in SUPPORTED_VERSIONS:
            raise OracleUnavailableError(
                f"Unsupported lock file version {version}",
                source="lockfile",
                details={"path": str(path)},
            )

        try:
            self.nodes: Dict[str, Any] = data["nodes"]
            self.root_inputs: Dict[str, Any] = self.nodes[data["root"]].get("inputs", {})
        except (KeyError, TypeError, AttributeError) as e:
            raise OracleUnavailableError(
                "Invalid lock file", source="lockfile", details={"path": str(path)}, cause=e
            )

    @classmethod
    def load(cls, path: Path) -> "FlakeLockfile":
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise OracleUnavailableError(
                f"Cannot read {path}", source="lockfile", details={"path": str(path)}, cause=e
            )
        if not isinstance(data, dict):
            raise OracleUnavailableError(
                "Invalid lock file", source="lockfile", details={"path": str(path)}
            )
        return cls(path, data)

    def input_names(self) -> List[str]:
        return list(self.root_inputs)

    def get_input(self, name: str) -> LockedInput:
        """Look up a root input; follows-inputs come back with `follows` set."""
        if name not in self.root_inputs:
            raise InputNotFoundError(
                f"Input {name} is not declared",
                directory=str(self.path.parent),
                input_name=name,
            )

        node_id = self.root_inputs[name]
        if isinstance(node_id, list):
            return LockedInput(name=name, type="follows", follows=node_id)

        node = self.nodes.get(node_id)
        if not isinstance(node, dict):
            raise OracleUnavailableError(
                f"Lock file has no node {node_id} for input {name}",
                source="lockfile",
                input_name=name,
            )

        original = node.get("original", {})
        return LockedInput(
            name=name,
            type=original.get("type", "unknown"),
            original=original,
            locked=node.get("locked", {}),
        )

    def __iter__(self) -> Iterator[LockedInput]:
        for name in self.input_names():
            yield self.get_input(name)
