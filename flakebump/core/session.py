# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Session Orchestrator

Resolves every target's proposals concurrently (each oracle query owns its
result, nothing is shared), then walks the targets one at a time through
patch generation and the interactive apply engine so that prompts never
interleave. A failing target is recorded and the session moves on.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple, Union

from .actions import ActionRunner
from .engine import ApplyEngine
from .exceptions import FlakeBumpError, TargetError, TargetNotFoundError
from .logger import get_logger
from .models import ApplyDecision, FlakeTarget, SessionState, UpdateProposal
from .oracle import RevisionOracle
from .patch import find_commented_declarations, generate_hunks
from .prompter import Prompter

logger = get_logger("session")

Outcome = Union[List[UpdateProposal], FlakeBumpError]


@dataclass
class TargetReport:
    """What happened to one target."""

    target: FlakeTarget
    proposals: List[UpdateProposal] = field(default_factory=list)
    decisions: List[Tuple[str, ApplyDecision]] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    saved: bool = False
    aborted: bool = False
    aborted_with_pending: bool = False

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def decision_summary(self, input_name: str) -> str:
        decisions = [decision.value for name, decision in self.decisions if name == input_name]
        return ", ".join(decisions)

    def rows(self) -> List[Tuple[str, str, str, str]]:
        """(target, input, decision summary, error) rows for the final report."""
        target = str(self.target.directory)
        rows = []

        for proposal in self.proposals:
            if proposal.no_change:
                summary = "up to date"
            else:
                summary = self.decision_summary(proposal.input_name) or "; ".join(self.notes) or "-"
            rows.append((target, proposal.input_name, summary, ""))

        for error in self.errors:
            input_name = getattr(error, "input_name", None) or self.target.input_name or "*"
            rows.append((target, input_name, "-", f"{type(error).__name__}: {error}"))

        if not rows:
            rows.append((target, self.target.input_name or "*", "no updates", ""))
        return rows


@dataclass
class SessionReport:
    """Aggregate of all target reports; decides the exit status."""

    targets: List[TargetReport] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if any(report.failed or report.aborted_with_pending for report in self.targets):
            return 1
        return 0

    def rows(self) -> List[Tuple[str, str, str, str]]:
        return [row for report in self.targets for row in report.rows()]


class SessionOrchestrator:
    """Drive locator output through oracle, patch generator and apply engine."""

    def __init__(
        self,
        oracle: RevisionOracle,
        prompter: Prompter,
        actions: ActionRunner,
        write_enabled: bool = False,
        diff_context: int = 3,
        max_parallel_queries: int = 4,
    ):
        self.oracle = oracle
        self.prompter = prompter
        self.actions = actions
        self.write_enabled = write_enabled
        self.diff_context = diff_context
        self.max_parallel_queries = max_parallel_queries

    async def resolve(self, targets: Sequence[FlakeTarget]) -> List[Tuple[FlakeTarget, Outcome]]:
        """Query the oracle for every target concurrently, keeping target order."""
        semaphore = asyncio.Semaphore(self.max_parallel_queries)

        async def resolve_one(target: FlakeTarget) -> Outcome:
            async with semaphore:
                try:
                    return await asyncio.to_thread(self.oracle.propose, target)
                except FlakeBumpError as e:
                    logger.warning(f"Failed to resolve {target}: {e}")
                    return e

        outcomes = await asyncio.gather(*(resolve_one(target) for target in targets))
        return list(zip(targets, outcomes))

    async def run(self, targets: Sequence[FlakeTarget]) -> SessionReport:
        """The `update` workflow."""
        report = SessionReport()
        for target, outcome in await self.resolve(targets):
            target_report = self._process(target, outcome)
            for error in target_report.errors:
                if isinstance(error, FlakeBumpError):
                    logger.info(f"{target}: {error.to_dict()}")
            report.targets.append(target_report)
        return report

    async def list_updates(self, targets: Sequence[FlakeTarget]) -> SessionReport:
        """The `list` workflow: report references without proposing edits."""
        report = SessionReport()
        for target, outcome in await self.resolve(targets):
            target_report = TargetReport(target=target)
            self.prompter.echo(f"{target.directory} [{target.label.value}]", style="header")

            if isinstance(outcome, FlakeBumpError):
                target_report.errors.append(outcome)
                self.prompter.echo(f"  {outcome}", style="error")
            else:
                target_report.proposals = outcome
                for proposal in outcome:
                    self._echo_proposal(proposal)
                if not outcome:
                    self.prompter.echo("  no inputs with known revisions", style="muted")

            report.targets.append(target_report)
        return report

    # -------------------------------------------------------------------------
    # Per target
    # -------------------------------------------------------------------------

    def _echo_proposal(self, proposal: UpdateProposal) -> None:
        current = f"{proposal.current} ({proposal.current.age})"
        if proposal.no_change or proposal.candidate is None:
            self.prompter.echo(f"  {proposal.input_name}: {current} up to date", style="muted")
        else:
            candidate = f"{proposal.candidate} ({proposal.candidate.age})"
            self.prompter.echo(f"  {proposal.input_name}: {current} -> {candidate}")

    def _process(self, target: FlakeTarget, outcome: Outcome) -> TargetReport:
        report = TargetReport(target=target)
        self.prompter.echo()
        self.prompter.echo(f"{target.directory} [{target.label.value}]", style="header")

        if isinstance(outcome, FlakeBumpError):
            report.errors.append(outcome)
            self.prompter.echo(str(outcome), style="error")
            return report

        report.proposals = outcome
        for proposal in outcome:
            self._echo_proposal(proposal)

        pending = [proposal for proposal in outcome if not proposal.no_change]
        if not pending:
            if outcome and (target.gcroots or target.uses_direnv):
                note = (
                    "The locked version matches the target; "
                    "the gcroots may be out of date, try `dg` or `direnv`"
                )
                return self._offer_actions(target, report, outcome, note)
            return report

        try:
            with open(target.flake_nix, encoding="utf-8", newline="") as f:
                lines = f.read().splitlines(keepends=True)
        except OSError as e:
            report.errors.append(
                TargetNotFoundError(
                    f"Cannot read {target.flake_nix}", directory=str(target.directory), cause=e
                )
            )
            return report

        editable = [proposal for proposal in pending if not proposal.lock_only]
        for proposal in editable:
            for line in find_commented_declarations(lines, proposal.input_name):
                self.prompter.echo(
                    f"Line {line + 1} holds a commented-out definition of {proposal.input_name}; "
                    "use e to remove it if it gets in the way",
                    style="warning",
                )
        for proposal in pending:
            if proposal.lock_only:
                self.prompter.echo(
                    f"{proposal.input_name} follows the registry; "
                    f"use `up` to run `nix flake update {proposal.input_name}`",
                    style="warning",
                )

        try:
            hunks = generate_hunks(lines, editable)
        except TargetError as e:
            e.directory = str(target.directory)
            report.errors.append(e)
            self.prompter.echo(str(e), style="error")
            return report

        if not hunks:
            if editable:
                note = "flake.nix already declares the target; the lock is stale, use `lock` or `direnv`"
            else:
                note = "Only `nix flake update` can move these inputs; use `up`"
            return self._offer_actions(target, report, pending, note)

        state = SessionState(lines=list(lines), write_enabled=self.write_enabled)
        engine = ApplyEngine(
            target,
            hunks,
            state,
            self.prompter,
            self.actions,
            context_lines=self.diff_context,
            proposals=pending,
        )
        engine.run()
        return self._collect(report, state)

    def _offer_actions(
        self,
        target: FlakeTarget,
        report: TargetReport,
        proposals: List[UpdateProposal],
        note: str,
    ) -> TargetReport:
        """Nothing to edit: print why and let the user run follow-on actions."""
        report.notes.append(note)
        self.prompter.echo(note, style="warning")

        state = SessionState(lines=[], write_enabled=self.write_enabled)
        ApplyEngine(
            target,
            [],
            state,
            self.prompter,
            self.actions,
            context_lines=self.diff_context,
            proposals=proposals,
            offer_actions=True,
        ).run()
        return self._collect(report, state)

    def _collect(self, report: TargetReport, state: SessionState) -> TargetReport:
        report.decisions = [(hunk.input_name, decision) for hunk, decision in state.decisions]
        report.errors.extend(state.errors)
        report.saved = state.saved
        report.aborted = state.aborted
        report.aborted_with_pending = state.aborted and state.any_applied and not state.saved
        return report
