# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Final session summary table."""

from typing import List, Sequence, Tuple

import click

from flakebump.core.session import SessionReport

HEADERS = ("TARGET", "INPUT", "RESULT", "ERROR")


def format_table(rows: Sequence[Tuple[str, ...]]) -> List[str]:
    """Left-aligned columns separated by two spaces."""
    widths = [len(header) for header in HEADERS]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]

    lines = []
    for row in (HEADERS, *rows):
        cells = [cell.ljust(width) for cell, width in zip(row, widths)]
        lines.append("  ".join(cells).rstrip())
    return lines


def render_report(report: SessionReport, title: str = "Summary") -> None:
    rows = report.rows()

    click.echo("\n" + "=" * 60)
    click.echo(title)
    click.echo("=" * 60)

    if not rows:
        click.echo("No flakes found")
        return

    for line in format_table(rows):
        click.echo(line)

    failed = sum(1 for target in report.targets if target.failed)
    if failed:
        click.echo(click.style(f"\n[-] {failed} target(s) failed", fg="red"), err=True)
