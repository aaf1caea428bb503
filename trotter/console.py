"""Rank-aware console for solver runs.

Usage:
    from trotter.console import console

    console.set_rank(rank)
    with console.spinner("Evolving..."):
        solver.evolve(100)

    console.success("Done", detail="norm=1.000000")
    console.warn("Rotation on a periodic axis")
    console.error("Aborted", detail=str(err))
    console.header("TROTTER", grid="640x640", kernel="cpu")

Only the printing rank (rank 0 unless configured otherwise) emits info,
success, warning and header output. Errors are printed on every rank so a
failing worker is always visible.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.text import Text


class Console:
    """Minimal logging interface with rich output."""

    __slots__ = ("_console", "_rank", "_printing_rank", "_quiet")

    def __init__(self, *, printing_rank: int = 0) -> None:
        self._console = RichConsole(stderr=True)
        self._rank = 0
        self._printing_rank = printing_rank
        self._quiet = False

    def set_rank(self, rank: int, *, printing_rank: Optional[int] = None) -> None:
        self._rank = int(rank)
        if printing_rank is not None:
            self._printing_rank = int(printing_rank)

    def set_quiet(self, quiet: bool) -> None:
        self._quiet = bool(quiet)

    @property
    def enabled(self) -> bool:
        return not self._quiet and self._rank == self._printing_rank

    def _prefix(self) -> str:
        return f"[dim]\\[rank {self._rank}][/dim] " if self._rank != self._printing_rank else ""

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Show a spinner while work is in progress."""
        if not self.enabled:
            yield
            return
        with self._console.status(f"[bold cyan]{message}", spinner="dots"):
            yield

    def success(self, message: str, *, detail: Optional[str] = None, title: Optional[str] = None) -> None:
        """Green success message."""
        if not self.enabled:
            return
        if title:
            text = Text(message, style="bold green")
            if detail:
                text.append(f"\n{detail}", style="dim")
            self._console.print(Panel(text, title=f"[cyan]{title}[/cyan]", border_style="green"))
        else:
            self._console.print(f"[bold green]✓[/bold green] {message}" + (f" [dim]{detail}[/dim]" if detail else ""))

    def warn(self, message: str, *, detail: Optional[str] = None) -> None:
        """Yellow warning message."""
        if not self.enabled:
            return
        self._console.print(f"[yellow]⚠[/yellow] {message}" + (f" [dim]{detail}[/dim]" if detail else ""))

    def error(self, message: str, *, detail: Optional[str] = None) -> None:
        """Red error message, printed on every rank."""
        self._console.print(
            f"{self._prefix()}[bold red]✗[/bold red] {message}" + (f" [dim]{detail}[/dim]" if detail else "")
        )

    def info(self, message: str, *, detail: Optional[str] = None) -> None:
        """Blue info message."""
        if not self.enabled:
            return
        self._console.print(f"[blue]•[/blue] {message}" + (f" [dim]{detail}[/dim]" if detail else ""))

    def header(self, title: str, **fields: str) -> None:
        """Show a panel with key-value fields."""
        if not self.enabled:
            return
        lines = [f"[bold]{k}:[/bold] {v}" for k, v in fields.items()]
        self._console.print(Panel("\n".join(lines), title=f"[cyan]{title}[/cyan]", border_style="blue"))


console = Console()
