"""Rich formatting helpers for the nsprune CLI.

stdout carries only the per-reference ``Deleted <name>`` lines so the
output stays scriptable; everything else goes to stderr.
Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from nsprune.models.result import CompactionResult, DeletionOutcome, PruneResult


def display_name(name: object) -> str:
    """Printable form of a ref name; undecodable bytes show as escapes."""
    return str(name).encode("utf-8", "backslashreplace").decode("utf-8")


def get_console(stderr: bool = False) -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=stderr, emoji=False)


def format_usage(prog: str, console: Console) -> None:
    console.print(f"usage: {prog} <rid> <nid>", markup=False, highlight=False, soft_wrap=True)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False, soft_wrap=True)


def format_deletion(outcome: DeletionOutcome, out: Console, err: Console) -> None:
    """Report one deletion attempt: successes on *out*, failures on *err*."""
    if outcome.deleted:
        out.print(
            f"Deleted {display_name(outcome.name)}",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
        return

    suffix = " [dim](retryable)[/dim]" if outcome.retryable else ""
    err.print(
        f"[red]Failed[/red] to delete {escape(display_name(outcome.name))}: "
        f"{escape(display_name(outcome.error or 'unknown error'))}{suffix}",
        highlight=False,
        soft_wrap=True,
    )


def format_dry_run(result: PruneResult, out: Console, err: Console) -> None:
    for name in result.matched:
        out.print(
            f"Would delete {display_name(name)}", markup=False, highlight=False, soft_wrap=True
        )
    if not result.matched:
        err.print("[dim]No references match.[/dim]")


def format_compaction(compaction: CompactionResult, console: Console) -> None:
    """Report a failed compaction. Successful compaction prints nothing."""
    if compaction.ok:
        return
    message = f"Compaction failed: {compaction.error}"
    if compaction.retryable:
        message += " (retryable, re-run to compact)"
    format_error(message, console)


def format_summary(result: PruneResult, console: Console) -> None:
    """One-line summary of a run with failures."""
    failed = len(result.failed)
    console.print(
        f"[yellow]{len(result.deleted)} deleted, {failed} failed[/yellow] "
        f"in {escape(result.repository)} for peer {escape(result.peer)}",
        highlight=False,
        soft_wrap=True,
    )
