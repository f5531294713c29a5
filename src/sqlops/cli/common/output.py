"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

# Prompt colours follow the rich theme above: cyan titles, green picks.
_PICK_STYLE = Style.from_dict(
    {
        "question": "bold ansicyan",
        "answer": "bold ansigreen",
        "pointer": "bold ansicyan",
        "highlighted": "bold ansicyan",
        "selected": "ansigreen",
        "checkbox-selected": "bold ansigreen",
        "instruction": "ansibrightblack",
        "disabled": "ansibrightblack italic",
    }
)

# Adding databases changes the AG, so the confirmation reads as a warning.
_CONFIRM_STYLE = Style.from_dict(
    {
        "question": "bold ansiyellow",
        "answer": "bold ansiyellow",
        "instruction": "ansibrightblack",
    }
)


def _state_style(value: str) -> str:
    """Return the theme style for a replica / synchronization state value."""
    if value in {"Connected", "Synchronized", "Synchronizing", "Primary", "Secondary"}:
        return "ok"
    if value in {"Initializing", "Reverting", "Resolving"}:
        return "warn"
    return "err"


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q_try(self, fn, *args, **kwargs):
        """Call a questionary prompt, dropping icon options it does not know."""
        try:
            return fn(*args, **kwargs)
        except TypeError:
            for k in ("pointer", "checked_icon", "unchecked_icon", "auto_enter"):
                kwargs.pop(k, None)
            return fn(*args, **kwargs)

    def _q(self, message: str) -> str:
        return f"sqlops: {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {escape(msg)}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {escape(msg)}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {escape(msg)}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {escape(msg)}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def select_many(self, message: str, choices: list[Any]) -> list[Any]:
        """
        Prompt the user to select multiple items from a list.

        Returns a list of selected values (empty when cancelled).
        """
        if not choices:
            return []

        prompt = self._q_try(
            questionary.checkbox,
            self._q(message),
            choices=choices,
            style=_PICK_STYLE,
            qmark="◆",
            instruction="(space toggles, a selects all, enter continues)",
            pointer="›",
            checked_icon="●",
            unchecked_icon="○",
        )
        picked = prompt.ask()
        return list(picked or [])

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        prompt = self._q_try(
            questionary.confirm,
            self._q(message),
            default=default,
            style=_CONFIRM_STYLE,
            qmark="◆",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def replicas_table(self, replicas: Iterable[Any], title: str = "Replicas") -> None:
        """
        Expects objects with .name .role .connection_state .availability_mode
        .seeding_mode (like sqlops.core.models.ReplicaInfo)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Replica", style="ok", no_wrap=True)
        t.add_column("Role")
        t.add_column("Connection")
        t.add_column("Availability mode", style="meta")
        t.add_column("Seeding mode", style="meta")

        for r in replicas:
            role = r.role.value
            conn = r.connection_state.value
            t.add_row(
                r.name,
                f"[{_state_style(role)}]{role}[/]",
                f"[{_state_style(conn)}]{conn}[/]",
                r.availability_mode.value,
                r.seeding_mode.value,
            )

        console.print(t)

    def prerequisites_table(
        self, results: Iterable[Any], title: str = "Prerequisites"
    ) -> None:
        """
        Expects PrerequisiteResult objects (.database .ok .request .failures).
        One row per database, or per failure when the check failed.
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Database", style="ok", no_wrap=True)
        t.add_column("Result")
        t.add_column("Restore needed on", style="meta")
        t.add_column("Details", style="err")

        for r in results:
            if r.ok:
                needing = ", ".join(r.request.replicas_needing_restore) or "-"
                t.add_row(r.database, "[ok]OK[/]", needing, "")
                continue
            for f in r.failures:
                detail = f"{f.replica}: {f.message}" if f.replica else f.message
                t.add_row(r.database, f"[err]{f.kind.value}[/]", "", escape(detail))

        console.print(t)

    def join_results_table(
        self, results: Iterable[Any], title: str = "Availability databases"
    ) -> None:
        """
        Expects JoinResult objects (one per database per replica).
        """
        t = Table(title=title, show_lines=False)
        t.add_column("SQL instance", style="ok", no_wrap=True)
        t.add_column("Database")
        t.add_column("Role", style="meta")
        t.add_column("Joined")
        t.add_column("Synchronization")

        for r in results:
            state = r.synchronization_state.value
            t.add_row(
                r.sql_instance,
                r.database,
                r.local_replica_role.value,
                "[ok]yes[/]" if r.is_joined else "[err]no[/]",
                f"[{_state_style(state)}]{state}[/]",
            )

        console.print(t)

    def failures_table(self, failures: Iterable[Any], title: str = "Failures") -> None:
        """Render AgJoinError objects with their database / replica / phase context."""
        t = Table(title=title, show_lines=False)
        t.add_column("Database", style="ok")
        t.add_column("Replica", style="meta")
        t.add_column("Phase", style="meta")
        t.add_column("Kind", style="err", no_wrap=True)
        t.add_column("Message")

        for f in failures:
            t.add_row(
                f.database or "-",
                f.replica or "-",
                f.phase or "-",
                f.kind.value,
                escape(f.message),
            )

        console.print(t)


out = Out()
