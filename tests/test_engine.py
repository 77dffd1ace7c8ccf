# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the interactive apply engine

Tests:
- Dry run vs write mode
- Skip, abort, edit and context commands
- Post-apply menu and follow-on actions on the last hunk
- Failed external commands
"""

import os

from conftest import FLAKE_NIX, REV_A, REV_B, RecordingRunner, ScriptedPrompter, write_flake

from flakebump.core.actions import ActionRunner
from flakebump.core.engine import ApplyEngine
from flakebump.core.exceptions import ExternalActionFailedError
from flakebump.core.models import (
    ApplyDecision,
    FlakeTarget,
    FollowOnAction,
    Reference,
    SessionState,
    UpdateProposal,
)
from flakebump.core.patch import generate_hunks

NIXPKGS = UpdateProposal(
    "nixpkgs",
    current=Reference(rev=REV_A, ref="nixos-25.05", last_modified=1700000000),
    candidate=Reference(ref="nixos-unstable"),
)
HOME_MANAGER = UpdateProposal(
    "home-manager",
    current=Reference(rev=REV_A, ref="release-25.05"),
    candidate=Reference(ref="master"),
)
FLAKE_UTILS = UpdateProposal(
    "flake-utils",
    current=Reference(rev=REV_A, ref="main"),
    candidate=Reference(rev=REV_B),
)


def run_engine(target, prompter, proposals=(NIXPKGS,), write_enabled=False, runner=None, context_lines=3):
    lines = FLAKE_NIX.splitlines(keepends=True)
    hunks = generate_hunks(lines, proposals)
    state = SessionState(lines=list(lines), write_enabled=write_enabled)
    actions = ActionRunner(write_enabled, prompter, runner=runner or RecordingRunner())
    engine = ApplyEngine(
        target, hunks, state, prompter, actions, context_lines=context_lines, proposals=proposals
    )
    return engine.run()


def read(target):
    with open(target.flake_nix, encoding="utf-8", newline="") as f:
        return f.read()


class TestDryRun:
    """Without write mode nothing touches the disk"""

    def test_accept_and_confirm_everything(self, target):
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["y"], confirms=[True, True])

        state = run_engine(target, prompter, runner=runner)

        assert read(target) == FLAKE_NIX
        assert runner.calls == []
        assert not state.saved
        assert state.decisions[0][1] == ApplyDecision.APPLIED
        assert "nixos-unstable" in state.content
        assert "Dry run: would write" in prompter.text
        assert "Dry run: would run `nix flake lock`" in prompter.text

    def test_same_prompts_as_write_mode(self, flake_dir, tmp_path):
        dry = ScriptedPrompter(answers=["y"], confirms=[True, True])
        run_engine(FlakeTarget(flake_dir), dry)

        other = FlakeTarget(write_flake(tmp_path / "other"))
        wet = ScriptedPrompter(answers=["y"], confirms=[True, True])
        run_engine(other, wet, write_enabled=True)

        assert dry.asked == wet.asked
        assert dry.confirmed == wet.confirmed


class TestReview:
    """Hunk-level commands"""

    def test_write_mode_applies_change(self, target):
        prompter = ScriptedPrompter(answers=["y"], confirms=[True, False])
        state = run_engine(target, prompter, write_enabled=True)

        assert state.saved
        assert read(target) == FLAKE_NIX.replace("nixos-25.05", "nixos-unstable")
        assert prompter.confirmed == ["Write flake.nix?", "Run `nix flake lock`?"]

    def test_header_shows_progress_and_ages(self, target):
        prompter = ScriptedPrompter(answers=["n"])
        run_engine(target, prompter)

        headers = [text for text, style in prompter.output if style == "header"]
        assert headers[0].startswith(f"{target.flake_nix} (1/1) nixpkgs: nixos-25.05@aaaaaaaaaaaa (")
        assert headers[0].endswith("-> nixos-unstable (unknown)")

    def test_skipping_everything_ends_without_menu(self, target):
        prompter = ScriptedPrompter(answers=["n", "n"])
        state = run_engine(target, prompter, proposals=(NIXPKGS, HOME_MANAGER), write_enabled=True)

        assert [d for _, d in state.decisions] == [ApplyDecision.SKIPPED, ApplyDecision.SKIPPED]
        assert prompter.confirmed == []
        assert "No changes applied" in prompter.text
        assert read(target) == FLAKE_NIX

    def test_prompts_are_numbered(self, target):
        prompter = ScriptedPrompter(answers=["n", "n", "n"])
        run_engine(target, prompter, proposals=(NIXPKGS, HOME_MANAGER, FLAKE_UTILS))
        assert [prompt.split()[0] for prompt in prompter.asked] == ["(1/3)", "(2/3)", "(3/3)"]

    def test_abort_writes_nothing(self, target):
        prompter = ScriptedPrompter(answers=["y", "q"])
        state = run_engine(
            target, prompter, proposals=(NIXPKGS, HOME_MANAGER, FLAKE_UTILS), write_enabled=True
        )

        assert state.aborted
        assert [d for _, d in state.decisions] == [ApplyDecision.APPLIED, ApplyDecision.ABORTED]
        assert prompter.confirmed == []
        assert read(target) == FLAKE_NIX
        assert "applied changes were not written" in prompter.text

    def test_interrupt_aborts(self, target):
        prompter = ScriptedPrompter(answers=[])
        state = run_engine(target, prompter, write_enabled=True)

        assert state.aborted
        assert [d for _, d in state.decisions] == [ApplyDecision.ABORTED]
        assert read(target) == FLAKE_NIX

    def test_interrupt_in_menu(self, target):
        prompter = ScriptedPrompter(answers=["y"], confirms=[])
        state = run_engine(target, prompter, write_enabled=True)

        assert state.aborted
        assert not state.saved
        assert [d for _, d in state.decisions] == [ApplyDecision.APPLIED]
        assert read(target) == FLAKE_NIX

    def test_edit(self, target):
        edited = '    nixpkgs.url = "github:NixOS/nixpkgs/nixos-24.11";\n'
        prompter = ScriptedPrompter(answers=["e", "y"], confirms=[True, False], edits=[edited])
        state = run_engine(target, prompter, write_enabled=True)

        assert state.decisions[0][1] == ApplyDecision.EDITED
        assert read(target) == FLAKE_NIX.replace("nixos-25.05", "nixos-24.11")

    def test_edit_rejected(self, target):
        edited = '    nixpkgs.url = "github:NixOS/nixpkgs/nixos-24.11";\n'
        prompter = ScriptedPrompter(answers=["e", "n"], edits=[edited])
        state = run_engine(target, prompter, write_enabled=True)

        assert state.decisions[0][1] == ApplyDecision.SKIPPED
        assert prompter.confirmed == []

    def test_edit_cancelled_presents_hunk_again(self, target):
        prompter = ScriptedPrompter(answers=["e", "y"], confirms=[False, False], edits=[None])
        state = run_engine(target, prompter)

        assert state.decisions[0][1] == ApplyDecision.APPLIED
        headers = [text for text, style in prompter.output if style == "header"]
        assert len(headers) == 2

    def test_editor_failure_presents_hunk_again(self, target):
        failure = ExternalActionFailedError("Editor failed: Editing failed")
        prompter = ScriptedPrompter(answers=["e", "n"], edits=[failure])
        state = run_engine(target, prompter)

        assert ("Editor failed: Editing failed", "error") in prompter.output
        assert [d for _, d in state.decisions] == [ApplyDecision.SKIPPED]
        assert state.errors == []
        headers = [text for text, style in prompter.output if style == "header"]
        assert len(headers) == 2

    def test_more_context(self, target):
        prompter = ScriptedPrompter(answers=["c", "n"])
        run_engine(target, prompter, context_lines=1)

        ranges = [text for text, style in prompter.output if text.startswith("@@")]
        assert ranges == ["@@ -4,3 +4,3 @@", "@@ -3,5 +3,5 @@"]

    def test_unknown_command_prints_help(self, target):
        prompter = ScriptedPrompter(answers=["x", "?", "n"])
        state = run_engine(target, prompter)

        assert "Unknown command: x" in prompter.text
        assert prompter.text.count("Skip this change") == 2
        assert [d for _, d in state.decisions] == [ApplyDecision.SKIPPED]


class TestFollowOnActions:
    """Post-apply menu and last-hunk actions"""

    def test_git_actions_offered_inside_work_tree(self, target):
        (target.directory / ".git").mkdir()
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["y"], confirms=[True, True, True, True])
        state = run_engine(target, prompter, write_enabled=True, runner=runner)

        assert [call[0] for call in runner.calls] == [
            ["nix", "flake", "lock"],
            ["git", "--no-pager", "diff", "--", "flake.nix", "flake.lock"],
            ["git", "add", "flake.nix", "flake.lock"],
            ["git", "commit", "-m", "chore: bump flake input nixpkgs"],
        ]
        assert state.completed_actions == {
            FollowOnAction.WRITE,
            FollowOnAction.LOCK,
            FollowOnAction.DIFF,
            FollowOnAction.COMMIT,
        }

    def test_direnv_offered_for_envrc(self, target):
        (target.directory / ".envrc").write_text("use flake\n")
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["y"], confirms=[False, False, True])
        run_engine(target, prompter, write_enabled=True, runner=runner)

        assert prompter.confirmed[2] == "Refresh direnv?"
        assert runner.calls[0][0] == ["direnv", "exec", ".", "true"]

    def test_commit_prompt_notes(self, target):
        (target.directory / ".git").mkdir()
        runner = RecordingRunner(checks={"rev-parse": False, "diff": False})
        prompter = ScriptedPrompter(answers=["y"], confirms=[False, False, False, False])
        run_engine(target, prompter, write_enabled=True, runner=runner)

        assert prompter.confirmed[-1] == (
            "Commit flake.nix and flake.lock into git? (No commits yet) (Stage is dirty)"
        )
        assert "Commit message: chore: bump flake input nixpkgs" in prompter.text

    def test_action_on_last_hunk_runs_immediately(self, target):
        (target.directory / ".git").mkdir()
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["n", "diff", "y"], confirms=[True, False, False, False])
        state = run_engine(
            target, prompter, proposals=(NIXPKGS, HOME_MANAGER), write_enabled=True, runner=runner
        )

        assert "diff" not in prompter.asked[0]
        assert "lock,direnv" not in prompter.asked[1]
        assert prompter.asked[1].endswith("[y,n,e,c,q,?,lock,diff,commit,sh]? ")
        assert runner.calls[0][0][:3] == ["git", "--no-pager", "diff"]
        assert len(prompter.asked) == 3
        assert [d for _, d in state.decisions] == [ApplyDecision.SKIPPED, ApplyDecision.APPLIED]
        # the diff ran against the old flake.nix, so writing offers it again
        assert prompter.confirmed[2].startswith("Show the git diff")
        assert FollowOnAction.DIFF not in state.completed_actions

    def test_lock_before_write_runs_again_after_write(self, target):
        (target.directory / ".git").mkdir()
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["lock", "y"], confirms=[True, True, True, True])
        state = run_engine(target, prompter, write_enabled=True, runner=runner)

        commands = [call[0][:3] for call in runner.calls]
        assert commands[0] == ["nix", "flake", "lock"]
        assert commands[1] == ["nix", "flake", "lock"]
        assert prompter.confirmed[1] == "Run `nix flake lock`?"
        assert state.saved
        assert read(target) == FLAKE_NIX.replace("nixos-25.05", "nixos-unstable")
        assert FollowOnAction.LOCK in state.completed_actions

    def test_completed_action_not_offered_twice(self, target):
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["lock", "sh", "y"], confirms=[False, False])
        run_engine(target, prompter, runner=runner)

        assert prompter.asked[0].endswith("[y,n,e,c,q,?,lock,sh]? ")
        assert prompter.asked[1].endswith("[y,n,e,c,q,?,sh]? ")

    def test_failed_command_is_recorded(self, target):
        runner = RecordingRunner(returncodes={"nix": 1})
        prompter = ScriptedPrompter(answers=["y"], confirms=[True, True])
        state = run_engine(target, prompter, write_enabled=True, runner=runner)

        assert state.saved
        assert len(state.errors) == 1
        assert isinstance(state.errors[0], ExternalActionFailedError)
        assert state.errors[0].returncode == 1
        assert FollowOnAction.LOCK not in state.completed_actions
        assert FollowOnAction.WRITE in state.completed_actions


def run_action_prompt(target, prompter, proposals=(), write_enabled=False, runner=None):
    state = SessionState(lines=[], write_enabled=write_enabled)
    actions = ActionRunner(write_enabled, prompter, runner=runner or RecordingRunner())
    engine = ApplyEngine(target, [], state, prompter, actions, proposals=proposals, offer_actions=True)
    return engine.run()


class TestActionPrompt:
    """Targets with nothing to edit but actions to offer"""

    def test_next_flake(self, target):
        prompter = ScriptedPrompter(answers=["n"])
        state = run_action_prompt(target, prompter)

        assert prompter.asked == [f"{target.directory} [n,q,?,lock,sh]? "]
        assert not state.aborted
        assert state.decisions == []

    def test_lock_then_next(self, target):
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["lock", "n"])
        state = run_action_prompt(target, prompter, write_enabled=True, runner=runner)

        assert runner.calls == [(["nix", "flake", "lock"], target.directory)]
        assert FollowOnAction.LOCK in state.completed_actions
        # actions stay available at this prompt
        assert prompter.asked[1] == prompter.asked[0]

    def test_update_registry_inputs(self, target):
        proposal = UpdateProposal(
            "nixpkgs",
            current=Reference(rev=REV_A),
            candidate=Reference(rev=REV_B),
            lock_only=True,
        )
        runner = RecordingRunner()
        prompter = ScriptedPrompter(answers=["up", "n"])
        run_action_prompt(target, prompter, proposals=(proposal,), write_enabled=True, runner=runner)

        assert ",up," in prompter.asked[0]
        assert runner.calls == [(["nix", "flake", "update", "nixpkgs"], target.directory)]

    def test_delete_gcroots(self, flake_dir):
        result = flake_dir / "result"
        result.symlink_to(flake_dir / "missing-store-path")
        target = FlakeTarget(directory=flake_dir, gcroots=(result,))
        prompter = ScriptedPrompter(answers=["dg", "n"])
        state = run_action_prompt(target, prompter, write_enabled=True)

        assert ",dg," in prompter.asked[0]
        assert not os.path.lexists(result)
        assert FollowOnAction.DELETE_GCROOTS in state.completed_actions

    def test_unknown_command_and_abort(self, target):
        prompter = ScriptedPrompter(answers=["x", "q"])
        state = run_action_prompt(target, prompter)

        assert "Unknown command: x" in prompter.text
        assert "Go to the next flake" in prompter.text
        assert state.aborted

    def test_interrupt_aborts(self, target):
        state = run_action_prompt(target, ScriptedPrompter())
        assert state.aborted
