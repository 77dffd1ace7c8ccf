# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Follow-on actions: writing flake.nix, re-locking, direnv reload, gcroot
removal, a shell in the flake directory, git diff and git commit.

ActionRunner is the only place that decides whether anything touches the
disk or runs a command. With write mode off every action prints what it
would do instead; read-only git checks run in both modes.
"""

import os
import shlex
import signal
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from jinja2 import Environment

from .config import ApplyConfig
from .exceptions import ExternalActionFailedError
from .logger import get_logger
from .models import FLAKE_FILE, LOCK_FILE, FlakeTarget
from .prompter import Prompter

logger = get_logger("actions")


@contextmanager
def sigint_deferred():
    """Let Ctrl-C reach a foreground child without killing us.

    A no-op handler (not SIG_IGN) is installed so the child, which resets
    handled signals on exec, still receives SIGINT.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGINT, lambda signum, frame: None)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


class CommandRunner:
    """Runs external commands attached to the terminal."""

    def run(self, argv: Sequence[str], cwd: Path, env: Optional[Dict[str, str]] = None) -> int:
        """Run and wait; returns the exit status."""
        logger.debug(f"Running {shlex.join(argv)} in {cwd}")
        try:
            with sigint_deferred():
                return subprocess.run(list(argv), cwd=cwd, env=env).returncode
        except OSError as e:
            raise ExternalActionFailedError(
                f"Could not start {argv[0]}", command=list(argv), cause=e
            )

    def check(self, argv: Sequence[str], cwd: Path) -> bool:
        """Run silently; True on exit status 0."""
        try:
            return subprocess.run(list(argv), cwd=cwd, capture_output=True).returncode == 0
        except OSError:
            return False


class ActionRunner:
    """Write-gated implementations of every follow-on action."""

    def __init__(
        self,
        write_enabled: bool,
        prompter: Prompter,
        config: Optional[ApplyConfig] = None,
        runner: Optional[CommandRunner] = None,
        nix_binary: str = "nix",
    ):
        self.write_enabled = write_enabled
        self.prompter = prompter
        self.config = config or ApplyConfig()
        self.runner = runner or CommandRunner()
        self.nix_binary = nix_binary
        self._templates = Environment()

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def _dry_run(self, what: str) -> None:
        self.prompter.echo(f"Dry run: would {what}", style="warning")

    def _execute(self, description: str, argv: List[str], cwd: Path) -> None:
        if not self.write_enabled:
            self._dry_run(f"run `{shlex.join(argv)}` in {cwd}")
            return

        returncode = self.runner.run(argv, cwd)
        if returncode != 0:
            raise ExternalActionFailedError(
                f"{description} failed with exit code {returncode}",
                command=argv,
                returncode=returncode,
            )
        self.prompter.echo(f"{description} succeeded", style="success")

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def write_flake(self, target: FlakeTarget, content: str) -> bool:
        """Replace flake.nix with `content`; returns whether it was written."""
        if not self.write_enabled:
            self._dry_run(f"write {target.flake_nix}")
            return False

        path = target.flake_nix
        fd, tmp_name = tempfile.mkstemp(prefix=".flake.nix.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            os.chmod(tmp_name, path.stat().st_mode & 0o7777)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ExternalActionFailedError(f"Failed to write {path}", cause=e)

        logger.info(f"Wrote {path}")
        self.prompter.echo(f"Wrote {path}", style="success")
        return True

    def update_lock(self, target: FlakeTarget) -> None:
        self._execute("nix flake lock", [self.nix_binary, "flake", "lock"], target.directory)

    def reload_environment(self, target: FlakeTarget) -> None:
        self._execute(
            "direnv reload", [self.config.direnv_binary, "exec", ".", "true"], target.directory
        )

    def show_diff(self, target: FlakeTarget) -> None:
        self._execute(
            "git diff",
            [self.config.git_binary, "--no-pager", "diff", "--", FLAKE_FILE, LOCK_FILE],
            target.directory,
        )

    def commit_message(self, target: FlakeTarget, inputs: Sequence[str]) -> str:
        template = self._templates.from_string(self.config.commit_message)
        return template.render(inputs=list(inputs), directory=str(target.directory)).strip()

    def commit_notes(self, target: FlakeTarget) -> List[str]:
        """Warnings shown next to the commit confirmation."""
        git = self.config.git_binary
        notes = []
        if not self.runner.check([git, "rev-parse", "--verify", "HEAD"], target.directory):
            notes.append("(No commits yet)")
        if not self.runner.check([git, "diff", "--quiet", "--cached", "--exit-code"], target.directory):
            notes.append("(Stage is dirty)")
        return notes

    def commit(self, target: FlakeTarget, message: str) -> None:
        git = self.config.git_binary
        self._execute("git add", [git, "add", FLAKE_FILE, LOCK_FILE], target.directory)
        self._execute("git commit", [git, "commit", "-m", message], target.directory)

    def update_inputs(self, target: FlakeTarget, inputs: Sequence[str]) -> None:
        """`nix flake update <input>...` for inputs that follow the registry."""
        self._execute(
            "nix flake update",
            [self.nix_binary, "flake", "update", *inputs],
            target.directory,
        )

    def delete_gcroots(self, target: FlakeTarget) -> None:
        """Remove the links (build results, direnv profiles) rooting the flake's outputs."""
        if not self.write_enabled:
            for root in target.gcroots:
                self._dry_run(f"delete {root}")
            return

        for root in target.gcroots:
            try:
                os.unlink(root)
            except FileNotFoundError:
                logger.debug(f"{root} is already gone")
            except OSError as e:
                raise ExternalActionFailedError(f"Failed to remove garbage collector root {root}", cause=e)
            logger.info(f"Deleted {root}")
        self.prompter.echo(f"Deleted {len(target.gcroots)} garbage collector root(s)", style="success")

    def launch_shell(self, target: FlakeTarget) -> None:
        """Interactive $SHELL in the flake directory; its exit status is only reported."""
        shell = os.environ.get("SHELL")
        if not shell:
            raise ExternalActionFailedError("SHELL environment variable missing")

        if not self.write_enabled:
            self._dry_run(f"launch {shell} in {target.directory}")
            return

        env = dict(os.environ)
        env["PROMPTEXTRA"] = " ".join(filter(None, [env.get("PROMPTEXTRA"), "flakebump shell "]))
        if self.runner.run([shell], target.directory, env=env) != 0:
            self.prompter.echo("Shell exited with nonzero exit code", style="warning")
        self.prompter.echo(
            "You have been returned to the prompt. Choose lock or similar if you edited files.",
            style="success",
        )
