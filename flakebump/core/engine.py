# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Interactive Apply Engine

A finite-state machine driving the review of one target's hunks:

    PRESENTING(i) -> AWAITING_INPUT(i) -> PRESENTING(i+1) ... -> POST_APPLY_MENU -> DONE

Targets with nothing to edit but something to do (a stale lock, inputs that
only `nix flake update` can move, stale gcroots) start in ACTION_PROMPT
instead, which offers the follow-on actions until the user moves on.

Accepted hunks only change the in-memory buffer. The file is written once,
from the post-apply menu, after an explicit confirmation; aborting never
writes. All prompts happen identically in dry-run mode, the ActionRunner
decides whether anything is actually performed.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Iterable, List, Sequence

from .actions import ActionRunner
from .exceptions import ExternalActionFailedError, SessionAborted
from .logger import get_logger
from .models import (
    ApplyDecision,
    FlakeTarget,
    FollowOnAction,
    Hunk,
    SessionState,
    UpdateProposal,
)
from .patch import hunk_view
from .prompter import Prompter

logger = get_logger("engine")


class EngineState(str, Enum):
    PRESENTING = "presenting"
    AWAITING_INPUT = "awaiting_input"
    POST_APPLY_MENU = "post_apply_menu"
    ACTION_PROMPT = "action_prompt"
    DONE = "done"


HUNK_COMMANDS = (
    ("y", "Apply this change"),
    ("n", "Skip this change"),
    ("e", "Edit the replacement using $EDITOR, then apply or skip it"),
    ("c", "Show more context"),
    ("q", "Abort; nothing is written"),
    ("?", "Print help"),
)

ACTION_PROMPT_COMMANDS = (
    ("n", "Go to the next flake"),
    ("q", "Abort"),
    ("?", "Print help"),
)

ACTION_DESCRIPTIONS = {
    FollowOnAction.WRITE: "Write flake.nix",
    FollowOnAction.LOCK: "Run `nix flake lock`",
    FollowOnAction.DIRENV: "Refresh direnv",
    FollowOnAction.DIFF: "Show the git diff of flake.nix and flake.lock",
    FollowOnAction.COMMIT: "Commit flake.nix and flake.lock into git",
    FollowOnAction.UPDATE: "Run `nix flake update` for inputs that follow the registry",
    FollowOnAction.DELETE_GCROOTS: "Delete garbage collector roots like build results and direnv",
    FollowOnAction.SHELL: "Launch $SHELL in the flake's directory",
}

# Confirmed one by one after review, in this order
MENU_ACTIONS = (
    FollowOnAction.WRITE,
    FollowOnAction.LOCK,
    FollowOnAction.DIRENV,
    FollowOnAction.DIFF,
    FollowOnAction.COMMIT,
)

# Typed at the last hunk's prompt or at the action prompt
PROMPT_ACTIONS = (
    FollowOnAction.LOCK,
    FollowOnAction.DIRENV,
    FollowOnAction.DIFF,
    FollowOnAction.COMMIT,
    FollowOnAction.UPDATE,
    FollowOnAction.DELETE_GCROOTS,
    FollowOnAction.SHELL,
)

# Actions that describe the files on disk and must run again once flake.nix changes
DEPENDS_ON_FLAKE = (
    FollowOnAction.LOCK,
    FollowOnAction.DIRENV,
    FollowOnAction.DIFF,
    FollowOnAction.COMMIT,
    FollowOnAction.UPDATE,
)


class ApplyEngine:
    """Review one target's hunks and run the follow-on actions."""

    def __init__(
        self,
        target: FlakeTarget,
        hunks: List[Hunk],
        state: SessionState,
        prompter: Prompter,
        actions: ActionRunner,
        context_lines: int = 3,
        proposals: Iterable[UpdateProposal] = (),
        offer_actions: bool = False,
    ):
        self.target = target
        self.hunks = hunks
        self.state = state
        self.prompter = prompter
        self.actions = actions
        self.initial_context = context_lines
        self.base_context = max(context_lines, 1)
        self.context = context_lines
        self.proposals = {proposal.input_name: proposal for proposal in proposals}
        self.registry_inputs = [
            proposal.input_name
            for proposal in self.proposals.values()
            if proposal.lock_only and not proposal.no_change
        ]

        self.position = 0
        if hunks:
            self.machine_state = EngineState.PRESENTING
        elif offer_actions:
            self.machine_state = EngineState.ACTION_PROMPT
        else:
            self.machine_state = EngineState.DONE
        self._handlers: Dict[EngineState, Callable[[], EngineState]] = {
            EngineState.PRESENTING: self._present,
            EngineState.AWAITING_INPUT: self._await_input,
            EngineState.POST_APPLY_MENU: self._post_apply_menu,
            EngineState.ACTION_PROMPT: self._action_prompt,
        }

    @property
    def hunk(self) -> Hunk:
        return self.hunks[self.position]

    @property
    def on_last_hunk(self) -> bool:
        return self.position == len(self.hunks) - 1

    def run(self) -> SessionState:
        while self.machine_state != EngineState.DONE:
            try:
                self.machine_state = self._handlers[self.machine_state]()
            except SessionAborted:
                self.machine_state = self._abort()
        return self.state

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    def _present(self) -> EngineState:
        hunk = self.hunk
        proposal = self.proposals.get(hunk.input_name)

        self.prompter.echo()
        header = f"{self.target.flake_nix} {hunk.progress} {hunk.input_name}"
        if proposal is not None and proposal.candidate is not None:
            header += (
                f": {proposal.current} ({proposal.current.age})"
                f" -> {proposal.candidate} ({proposal.candidate.age})"
            )
        self.prompter.echo(header, style="header")

        styles = {"@": "muted", "-": "removed", "+": "added", " ": None}
        for kind, text in hunk_view(self.state.lines, hunk, self.state.offset, self.context):
            line = text if kind == "@" else f"{kind}{text}"
            self.prompter.echo(line, style=styles[kind])

        return EngineState.AWAITING_INPUT

    def _await_input(self) -> EngineState:
        hunk = self.hunk
        extra = self._last_hunk_actions()
        tokens = ",".join([token for token, _ in HUNK_COMMANDS] + [action.value for action in extra])
        answer = self.prompter.ask(f"{hunk.progress} Apply this change to {hunk.input_name} [{tokens}]? ")

        if answer == "y":
            self.state.replace(hunk, list(hunk.replacement_lines))
            self.state.record(hunk, ApplyDecision.APPLIED)
            return self._advance()
        if answer == "n":
            self.state.record(hunk, ApplyDecision.SKIPPED)
            return self._advance()
        if answer == "e":
            return self._edit()
        if answer == "c":
            self.context += self.base_context
            return EngineState.PRESENTING
        if answer == "q":
            return self._abort()
        if answer == "?":
            self._print_help(HUNK_COMMANDS, extra)
            return EngineState.AWAITING_INPUT

        for action in extra:
            if answer == action.value:
                self._run_action(action)
                return EngineState.AWAITING_INPUT

        if answer:
            self.prompter.echo(f"Unknown command: {answer}", style="error")
        self._print_help(HUNK_COMMANDS, extra)
        return EngineState.AWAITING_INPUT

    def _post_apply_menu(self) -> EngineState:
        # completed_actions is re-read per step: writing flake.nix re-opens the rest
        for action in self._offered(MENU_ACTIONS):
            if action in self.state.completed_actions:
                continue

            if action == FollowOnAction.COMMIT:
                message = self._commit_message()
                notes = " ".join(self.actions.commit_notes(self.target))
                prompt = f"Commit flake.nix and flake.lock into git? {notes}".rstrip()
                self.prompter.echo(f"Commit message: {message}", style="muted")
            else:
                prompt = f"{ACTION_DESCRIPTIONS[action]}?"

            if self.prompter.confirm(prompt):
                self._run_action(action)
            else:
                logger.debug(f"Declined {action.value} for {self.target}")

        return EngineState.DONE

    def _action_prompt(self) -> EngineState:
        extra = self._offered(PROMPT_ACTIONS)
        tokens = ",".join([token for token, _ in ACTION_PROMPT_COMMANDS] + [action.value for action in extra])
        answer = self.prompter.ask(f"{self.target.directory} [{tokens}]? ")

        if answer == "n":
            self.prompter.echo("Going to the next flake", style="success")
            return EngineState.DONE
        if answer == "q":
            return self._abort()
        if answer == "?":
            self._print_help(ACTION_PROMPT_COMMANDS, extra)
            return EngineState.ACTION_PROMPT

        for action in extra:
            if answer == action.value:
                self._run_action(action)
                return EngineState.ACTION_PROMPT

        if answer:
            self.prompter.echo(f"Unknown command: {answer}", style="error")
        self._print_help(ACTION_PROMPT_COMMANDS, extra)
        return EngineState.ACTION_PROMPT

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _advance(self) -> EngineState:
        self.position += 1
        self.context = self.initial_context
        if self.position < len(self.hunks):
            return EngineState.PRESENTING
        if self.state.any_applied:
            return EngineState.POST_APPLY_MENU
        self.prompter.echo("No changes applied", style="muted")
        return EngineState.DONE

    def _edit(self) -> EngineState:
        hunk = self.hunk
        try:
            edited = self.prompter.edit("".join(hunk.replacement_lines))
        except ExternalActionFailedError as e:
            logger.warning(f"Editor failed for {self.target}: {e}")
            self.prompter.echo(str(e), style="error")
            return EngineState.PRESENTING

        if edited is None:
            self.prompter.echo("Editor closed without saving; keeping the proposed change", style="warning")
            return EngineState.PRESENTING

        ending = _line_ending(hunk.original_lines[-1])
        stripped = edited.rstrip("\r\n").splitlines()
        replacement = [line + ending for line in stripped]

        for line in stripped:
            self.prompter.echo(f"+{line}", style="added")

        while True:
            answer = self.prompter.ask(f"{hunk.progress} Apply edited change [y,n]? ")
            if answer == "y":
                self.state.replace(hunk, replacement)
                self.state.record(hunk, ApplyDecision.EDITED)
                return self._advance()
            if answer == "n":
                self.state.record(hunk, ApplyDecision.SKIPPED)
                return self._advance()

    def _abort(self) -> EngineState:
        if self.position < len(self.hunks) and not self._decided(self.hunk):
            self.state.record(self.hunk, ApplyDecision.ABORTED)
        self.state.aborted = True

        if self.state.any_applied and not self.state.saved:
            self.prompter.echo("Aborted; applied changes were not written", style="warning")
        else:
            self.prompter.echo("Aborted", style="warning")
        return EngineState.DONE

    # -------------------------------------------------------------------------
    # Follow-on actions
    # -------------------------------------------------------------------------

    def _available(self, action: FollowOnAction) -> bool:
        if action == FollowOnAction.DIRENV:
            return self.target.uses_direnv
        if action in (FollowOnAction.DIFF, FollowOnAction.COMMIT):
            return self.target.in_git_repo
        if action == FollowOnAction.UPDATE:
            return bool(self.registry_inputs)
        if action == FollowOnAction.DELETE_GCROOTS:
            return bool(self.target.gcroots)
        return True

    def _offered(self, actions: Sequence[FollowOnAction]) -> List[FollowOnAction]:
        return [action for action in actions if self._available(action)]

    def _last_hunk_actions(self) -> List[FollowOnAction]:
        if not self.on_last_hunk:
            return []
        return [
            action
            for action in self._offered(PROMPT_ACTIONS)
            if action == FollowOnAction.SHELL or action not in self.state.completed_actions
        ]

    def _commit_message(self) -> str:
        names = []
        for hunk, decision in self.state.decisions:
            if decision.mutates and hunk.input_name not in names:
                names.append(hunk.input_name)
        if not names:
            names = sorted({hunk.input_name for hunk in self.hunks} | set(self.registry_inputs))
        return self.actions.commit_message(self.target, names)

    def _run_action(self, action: FollowOnAction) -> None:
        try:
            if action == FollowOnAction.WRITE:
                self.state.saved = self.actions.write_flake(self.target, self.state.content)
            elif action == FollowOnAction.LOCK:
                self.actions.update_lock(self.target)
            elif action == FollowOnAction.DIRENV:
                self.actions.reload_environment(self.target)
            elif action == FollowOnAction.DIFF:
                self.actions.show_diff(self.target)
            elif action == FollowOnAction.COMMIT:
                self.actions.commit(self.target, self._commit_message())
            elif action == FollowOnAction.UPDATE:
                self.actions.update_inputs(self.target, self.registry_inputs)
            elif action == FollowOnAction.DELETE_GCROOTS:
                self.actions.delete_gcroots(self.target)
            elif action == FollowOnAction.SHELL:
                self.actions.launch_shell(self.target)
        except ExternalActionFailedError as e:
            logger.error(f"{action.value} failed for {self.target}: {e}")
            self.prompter.echo(str(e), style="error")
            self.state.errors.append(e)
            return

        if action == FollowOnAction.WRITE:
            # anything run before the write saw the old flake.nix
            self.state.completed_actions.difference_update(DEPENDS_ON_FLAKE)
        self.state.completed_actions.add(action)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _decided(self, hunk: Hunk) -> bool:
        return any(decided is hunk for decided, _ in self.state.decisions)

    def _print_help(self, commands, extra: List[FollowOnAction]) -> None:
        for token, description in commands:
            self.prompter.echo(f"{token:<6} - {description}", style="command")
        for action in extra:
            self.prompter.echo(f"{action.value:<6} - {ACTION_DESCRIPTIONS[action]}", style="command")


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""
