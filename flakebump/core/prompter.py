# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Terminal interaction seam between the core and the CLI."""

from abc import ABC, abstractmethod
from typing import Optional


class Prompter(ABC):
    """
    Everything the apply engine needs from a terminal.

    Styles are semantic names ("info", "warning", "error", "success",
    "prompt", "header", "muted", "added", "removed", "command"); the
    implementation decides how they look. `ask` and `confirm` raise
    SessionAborted when the user interrupts or input ends.
    """

    @abstractmethod
    def echo(self, text: str = "", style: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def ask(self, prompt: str) -> str:
        """Read one line of input, stripped."""

    @abstractmethod
    def confirm(self, prompt: str) -> bool:
        """Yes/no question defaulting to no."""

    @abstractmethod
    def edit(self, text: str) -> Optional[str]:
        """Open `text` in the user's editor; None if the editor was closed without saving.

        Raises ExternalActionFailedError when the editor is missing or exits nonzero.
        """
