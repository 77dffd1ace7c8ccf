# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

# flakebump CLI Module

from flakebump.cli.prompts import STYLES, ClickPrompter
from flakebump.cli.report import render_report

__all__ = [
    "ClickPrompter",
    "STYLES",
    "render_report",
]
