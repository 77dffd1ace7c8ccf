# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Terminal prompter backed by click."""

from typing import Any, Dict, Optional

import click

from flakebump.core.exceptions import ExternalActionFailedError, SessionAborted
from flakebump.core.prompter import Prompter

STYLES: Dict[str, Dict[str, Any]] = {
    "info": {},
    "warning": {"fg": "yellow"},
    "error": {"fg": "red", "bold": True},
    "success": {"fg": "green"},
    "prompt": {"fg": "blue", "bold": True},
    "header": {"fg": "blue", "bold": True},
    "muted": {"fg": "bright_black"},
    "added": {"fg": "green"},
    "removed": {"fg": "red"},
    "command": {"fg": "cyan"},
}


class ClickPrompter(Prompter):
    """Prompter writing to the terminal with click."""

    def __init__(self, color: Optional[bool] = None):
        self.color = color

    def _style(self, text: str, style: Optional[str]) -> str:
        return click.style(text, **STYLES.get(style or "info", {}))

    def echo(self, text: str = "", style: Optional[str] = None) -> None:
        click.echo(self._style(text, style), color=self.color)

    def ask(self, prompt: str) -> str:
        try:
            answer = click.prompt(
                self._style(prompt.rstrip(), "prompt"),
                default="",
                show_default=False,
                prompt_suffix=" ",
            )
        except (click.Abort, EOFError, KeyboardInterrupt):
            raise SessionAborted("Interrupted")
        return answer.strip()

    def confirm(self, prompt: str) -> bool:
        try:
            return click.confirm(self._style(prompt, "prompt"), default=False)
        except (click.Abort, EOFError, KeyboardInterrupt):
            raise SessionAborted("Interrupted")

    def edit(self, text: str) -> Optional[str]:
        try:
            return click.edit(text, extension=".nix")
        except click.ClickException as e:
            raise ExternalActionFailedError(f"Editor failed: {e.message}") from e
