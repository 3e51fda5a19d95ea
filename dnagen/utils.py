"""Shared utility functions for dnagen.

Provides JSON serialisation, name sanitising, duration formatting
and Rich-based console reporting used by the pipeline and its collaborators.
"""

from __future__ import annotations

import json
import re
from typing import Any

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary name to a safe directory/package name.

    Examples::

        sanitize_name("My Cool App") -> "my-cool-app"
        sanitize_name("  Auth (v2)  ") -> "auth-v2"
    """
    return "-".join(re.findall(r"[a-z0-9_]+", name.lower()))


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def dump_json(data: dict[str, Any] | list[Any]) -> str:
    """Serialise *data* as pretty-printed JSON with a trailing newline."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Render *seconds* as ``3.7s``, ``1m 5s`` or ``1h 1m 1s``."""
    if seconds < 60:
        return f"{max(seconds, 0.0):.1f}s"

    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    parts = [f"{hours}h"] if hours else []
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STAGE_COLORS: dict[str, str] = {
    "cli-validation": "bright_cyan",
    "dna-composition": "bright_green",
    "pre-generation-validation": "bright_yellow",
    "template-preparation": "bright_yellow",
    "template-generation": "bright_magenta",
    "quality-validation": "bright_blue",
    "security-scanning": "bright_red",
    "finalization": "bright_blue",
}


def print_stage_header(index: int, name: str, out: Console | None = None) -> None:
    """Print a full-width rule announcing a pipeline stage."""
    out = out or console
    color = STAGE_COLORS.get(name, "white")
    out.print(
        Rule(
            f"[bold {color}] Stage {index}: {name.upper()} [/bold {color}]",
            style=color,
        )
    )


def print_summary_table(data: dict[str, str], title: str = "Summary", out: Console | None = None) -> None:
    """Print a two-column key/value summary table."""
    table = Table("Metric", "Value", title=title, header_style="bold cyan")
    table.columns[0].style = "dim"
    table.columns[0].no_wrap = True
    for row in data.items():
        table.add_row(*map(str, row))
    (out or console).print(table, "")


def print_success(message: str, out: Console | None = None) -> None:
    """Print a green success message."""
    (out or console).print(f"[bold green]{message}[/bold green]")


def print_error(message: str, out: Console | None = None) -> None:
    """Print a red error message."""
    (out or console).print(f"[bold red]{message}[/bold red]")


def print_warning(message: str, out: Console | None = None) -> None:
    """Print a yellow warning message."""
    (out or console).print(f"[bold yellow]{message}[/bold yellow]")


def create_progress(out: Console | None = None) -> Progress:
    """Create a Rich progress bar configured for pipeline stages."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=out or console,
    )
