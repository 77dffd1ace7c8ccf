# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Shared fixtures: a scripted terminal, a recording command runner and demo flakes."""

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add flakebump to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from flakebump.core.actions import ActionRunner, CommandRunner
from flakebump.core.exceptions import SessionAborted
from flakebump.core.models import FlakeTarget
from flakebump.core.prompter import Prompter

REV_A = "a" * 40
REV_B = "b" * 40
REV_C = "c" * 40

FLAKE_NIX = """{
  description = "demo";

  inputs = {
    nixpkgs.url = "github:NixOS/nixpkgs/nixos-25.05";
    home-manager = {
      url = "github:nix-community/home-manager/release-25.05";
      inputs.nixpkgs.follows = "nixpkgs";
    };
    flake-utils.url = "github:numtide/flake-utils/main";
  };

  outputs = { self, nixpkgs, home-manager, flake-utils }: { };
}
"""


def github_node(owner: str, repo: str, ref: Optional[str], rev: str, last_modified: int = 1700000000):
    original = {"type": "github", "owner": owner, "repo": repo}
    if ref:
        original["ref"] = ref
    return {
        "locked": {
            "type": "github",
            "owner": owner,
            "repo": repo,
            "rev": rev,
            "lastModified": last_modified,
            "narHash": "sha256-AAAA",
        },
        "original": original,
    }


def indirect_node(flake_id: str, rev: str, ref: Optional[str] = None, last_modified: int = 1700000000):
    """Registry input as locked: resolved to github, declared by id"""
    node = github_node("NixOS", flake_id, None, rev, last_modified)
    node["original"] = {"type": "indirect", "id": flake_id}
    if ref:
        node["original"]["ref"] = ref
    return node


def make_lock(nodes: Dict[str, dict], version: int = 7) -> dict:
    """flake.lock with every node a direct input of root"""
    root_inputs = {name: name for name in nodes}
    all_nodes = dict(nodes)
    all_nodes["root"] = {"inputs": root_inputs}
    return {"nodes": all_nodes, "root": "root", "version": version}


DEFAULT_LOCK = make_lock(
    {
        "nixpkgs": github_node("NixOS", "nixpkgs", "nixos-25.05", REV_A),
        "home-manager": github_node("nix-community", "home-manager", "release-25.05", REV_A),
        "flake-utils": github_node("numtide", "flake-utils", "main", REV_A),
    }
)


def write_flake(directory: Path, flake_nix: str = FLAKE_NIX, lock: Optional[dict] = DEFAULT_LOCK) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    with open(directory / "flake.nix", "w", encoding="utf-8", newline="") as f:
        f.write(flake_nix)
    if lock is not None:
        (directory / "flake.lock").write_text(json.dumps(lock, indent=2), encoding="utf-8")
    return directory


class ScriptedPrompter(Prompter):
    """Prompter answering from scripted lists; running out of answers is Ctrl-C."""

    def __init__(self, answers=(), confirms=(), edits=()):
        self.answers: List[str] = list(answers)
        self.confirms: List[bool] = list(confirms)
        self.edits: List[Optional[str]] = list(edits)
        self.output: List[tuple] = []
        self.asked: List[str] = []
        self.confirmed: List[str] = []

    @property
    def text(self) -> str:
        return "\n".join(text for text, _ in self.output)

    def echo(self, text: str = "", style: Optional[str] = None) -> None:
        self.output.append((text, style))

    def ask(self, prompt: str) -> str:
        self.asked.append(prompt)
        if not self.answers:
            raise SessionAborted("Interrupted")
        return self.answers.pop(0)

    def confirm(self, prompt: str) -> bool:
        self.confirmed.append(prompt)
        if not self.confirms:
            raise SessionAborted("Interrupted")
        return self.confirms.pop(0)

    def edit(self, text: str) -> Optional[str]:
        edited = self.edits.pop(0)
        if isinstance(edited, Exception):
            raise edited
        return edited


class RecordingRunner(CommandRunner):
    """Records commands instead of running them."""

    def __init__(self, returncodes: Optional[Dict[str, int]] = None, checks: Optional[Dict[str, bool]] = None):
        self.returncodes = returncodes or {}
        self.checks = checks or {}
        self.calls: List[tuple] = []
        self.checked: List[tuple] = []
        self.envs: List[Optional[dict]] = []

    def run(self, argv, cwd, env=None):
        self.calls.append((list(argv), Path(cwd)))
        self.envs.append(env)
        return self.returncodes.get(argv[0], 0)

    def check(self, argv, cwd):
        self.checked.append((list(argv), Path(cwd)))
        return self.checks.get(argv[1], True)


@pytest.fixture
def flake_dir(tmp_path):
    return write_flake(tmp_path / "proj")


@pytest.fixture
def target(flake_dir):
    return FlakeTarget(directory=flake_dir)


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def make_actions(runner):
    def factory(prompter, write_enabled=False):
        return ActionRunner(write_enabled, prompter, runner=runner)

    return factory
