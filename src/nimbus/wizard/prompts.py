"""Interactive terminal prompts used by wizard steps.

:class:`Prompter` is a thin layer over :func:`typer.prompt` and
:func:`typer.confirm`. Prompts go to stderr so stdout stays clean for data.
Steps receive a ``Prompter`` instead of calling Typer directly, which lets
tests substitute a scripted one.

Ctrl-C or EOF at a prompt makes click raise ``Abort``. The prompter turns
that into :class:`KeyboardInterrupt`, which the wizard engine does not
catch, so an aborted prompt unwinds the whole wizard instead of being
recorded as a failed step.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, TypeVar

import typer

from nimbus.output import error, info

T = TypeVar("T")


def _ask(func: Any, *args: Any, **kwargs: Any) -> Any:
    try:
        return func(*args, **kwargs)
    except typer.Abort:
        raise KeyboardInterrupt from None


class Prompter:
    """Ask the user questions on the terminal."""

    def confirm(self, message: str, default: bool = True) -> bool:
        return _ask(typer.confirm, message, default=default, err=True)

    def text(self, message: str, default: Optional[str] = None, secret: bool = False) -> str:
        """Prompt for a line of text.

        Args:
            message: Prompt label.
            default: Value used when the user just presses Enter.
            secret: Hide the typed characters (API keys).
        """
        value = _ask(
            typer.prompt,
            message,
            default=default,
            hide_input=secret,
            show_default=not secret,
            err=True,
        )
        return str(value).strip()

    def select(self, message: str, choices: Sequence[tuple[T, str]], default: int = 0) -> T:
        """Show a numbered list and return the value of the chosen entry.

        Args:
            message: Heading printed above the list.
            choices: ``(value, label)`` pairs in display order.
            default: Index of the entry chosen on a bare Enter.

        Raises:
            ValueError: If *choices* is empty.
        """
        if not choices:
            raise ValueError("select() needs at least one choice")

        info(message)
        for i, (_, label) in enumerate(choices, 1):
            info(f"  {i}. {label}")

        while True:
            choice = _ask(typer.prompt, "Select number", default=str(default + 1), err=True)
            try:
                idx = int(choice) - 1
            except ValueError:
                idx = -1
            if 0 <= idx < len(choices):
                return choices[idx][0]
            error(f"Selection must be between 1 and {len(choices)}.")
