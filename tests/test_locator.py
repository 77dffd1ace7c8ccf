# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for target discovery

Tests:
- Descriptor parsing
- Explicit targets
- gcroot scanning and classification
- Deduplication of discovered flakes
"""

import os
from pathlib import Path

import pytest

from conftest import write_flake

from flakebump.core.exceptions import TargetNotFoundError
from flakebump.core.gcroots import RootCandidate, classify_root, scan_gcroots
from flakebump.core.locator import discover, locate, parse_descriptor, resolve_explicit
from flakebump.core.models import TargetLabel


class TestDescriptor:
    """`<path>#<input>` parsing"""

    def test_path_and_input(self):
        assert parse_descriptor("~/src/site#nixpkgs") == (Path("~/src/site").expanduser(), "nixpkgs")

    def test_input_only(self):
        assert parse_descriptor("#nixpkgs") == (Path("."), "nixpkgs")

    def test_path_only(self):
        assert parse_descriptor("/etc/nixos") == (Path("/etc/nixos"), None)

    def test_current_directory(self):
        assert parse_descriptor(".#") == (Path("."), None)


class TestExplicit:
    """Targets named on the command line"""

    def test_directory(self, flake_dir):
        target = resolve_explicit(f"{flake_dir}#nixpkgs")
        assert target.directory == flake_dir.resolve()
        assert target.input_name == "nixpkgs"
        assert target.label == TargetLabel.EXPLICIT

    def test_flake_nix_path(self, flake_dir):
        target = resolve_explicit(str(flake_dir / "flake.nix"))
        assert target.directory == flake_dir.resolve()
        assert target.input_name is None

    def test_input_option(self, flake_dir):
        assert resolve_explicit(str(flake_dir), "home-manager").input_name == "home-manager"

    def test_descriptor_input_wins(self, flake_dir):
        assert resolve_explicit(f"{flake_dir}#nixpkgs", "home-manager").input_name == "nixpkgs"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(TargetNotFoundError):
            resolve_explicit(str(tmp_path / "missing"))

    def test_directory_without_flake(self, tmp_path):
        with pytest.raises(TargetNotFoundError) as exc_info:
            resolve_explicit(f"{tmp_path}#nixpkgs")
        assert exc_info.value.input_name == "nixpkgs"


class TestGcroots:
    """Scanning the automatic gcroots directory"""

    def test_classify(self):
        assert classify_root(Path("/home/me/proj/.direnv/flake-profile-a5d5b61aa8a6")) == (
            Path("/home/me/proj"),
            TargetLabel.DIRENV,
        )
        assert classify_root(Path("/home/me/proj/.direnv/flake-inputs/abc-source")) == (
            Path("/home/me/proj"),
            TargetLabel.DIRENV,
        )
        assert classify_root(Path("/home/me/proj/result")) == (Path("/home/me/proj"), TargetLabel.RESULT)
        assert classify_root(Path("/home/me/proj/result-man")) == (Path("/home/me/proj"), TargetLabel.RESULT)
        assert classify_root(Path("/home/me/.local/state/nix/profiles/profile-7-link")) is None

    def test_scan(self, tmp_path):
        proj = write_flake(tmp_path / "proj")
        (proj / ".direnv").mkdir()
        (proj / ".direnv" / "flake-profile-x").write_text("")
        site = write_flake(tmp_path / "site")
        (site / "result").write_text("")

        gcroots = tmp_path / "gcroots"
        gcroots.mkdir()
        os.symlink(proj / ".direnv" / "flake-profile-x", gcroots / "aaa")
        os.symlink(site / "result", gcroots / "bbb")
        os.symlink(tmp_path / "gone" / "result", gcroots / "ccc")
        os.symlink(tmp_path / "proj", gcroots / "ddd")

        candidates = scan_gcroots(gcroots)
        assert [(c.directory, c.label) for c in candidates] == [(proj, TargetLabel.DIRENV), (site, TargetLabel.RESULT)]
        assert [c.root for c in candidates] == [proj / ".direnv" / "flake-profile-x", site / "result"]

    def test_missing_directory(self, tmp_path):
        assert scan_gcroots(tmp_path / "nope") == []


class TestDiscover:
    """Filtering and deduplicating scanner candidates"""

    def test_drops_directories_without_flake(self, tmp_path):
        proj = write_flake(tmp_path / "proj")
        plain = tmp_path / "plain"
        plain.mkdir()

        targets = discover([(plain, TargetLabel.RESULT), (proj, TargetLabel.RESULT)], "nixpkgs")
        assert [t.directory for t in targets] == [Path(os.path.realpath(proj))]
        assert targets[0].input_name == "nixpkgs"

    def test_direnv_label_wins_for_duplicates(self, tmp_path):
        proj = write_flake(tmp_path / "proj")
        alias = tmp_path / "alias"
        os.symlink(proj, alias)

        targets = discover([(alias, TargetLabel.DIRENV), (proj, TargetLabel.RESULT)])
        assert len(targets) == 1
        assert targets[0].label == TargetLabel.DIRENV

    def test_gcroots_of_duplicates_are_merged(self, tmp_path):
        proj = write_flake(tmp_path / "proj")
        alias = tmp_path / "alias"
        os.symlink(proj, alias)
        profile = proj / ".direnv" / "flake-profile-x"
        result = proj / "result"

        targets = discover(
            [
                RootCandidate(alias, TargetLabel.DIRENV, root=profile),
                RootCandidate(proj, TargetLabel.RESULT, root=result),
            ]
        )
        assert targets[0].gcroots == (profile, result)

    def test_sorted(self, tmp_path):
        b = write_flake(tmp_path / "b")
        a = write_flake(tmp_path / "a")
        targets = discover([(b, TargetLabel.RESULT), (a, TargetLabel.DIRENV)])
        assert [t.directory.name for t in targets] == ["a", "b"]


def test_locate_prefers_descriptor(flake_dir, tmp_path):
    other = write_flake(tmp_path / "other")
    targets = locate(str(flake_dir), [(other, TargetLabel.DIRENV)])
    assert [t.directory for t in targets] == [flake_dir.resolve()]

    assert [t.directory.name for t in locate(None, [(other, TargetLabel.DIRENV)])] == ["other"]
