"""Operator confirmation providers."""

from typing import Callable

from pxtools.core.logging import Console


class Prompter:
    """Decides whether a risky action may go ahead."""

    def confirm(self, message: str, default: bool = False) -> bool:
        raise NotImplementedError


class InteractivePrompter(Prompter):
    """
    Ask the operator on the terminal.

    An empty answer takes the default; end of input counts as the default too,
    so a closed stdin never confirms a destructive action by accident.
    """

    def __init__(self, console: Console, read: Callable[[], str] = input):
        self.console = console
        self._read = read

    def confirm(self, message: str, default: bool = False) -> bool:
        choices = "[Y/n]" if default else "[y/N]"
        self.console.prompt(f"{message} {choices}: ")
        try:
            answer = self._read().strip()
        except EOFError:
            self.console.plain()
            return default

        if not answer:
            return default
        accepted = answer.lower() in ("y", "yes")
        if self.console.logger:
            self.console.logger.info(message, answer=answer, accepted=accepted)
        return accepted


class AutoYesPrompter(Prompter):
    """Accept every prompt, for unattended runs (-y)."""

    def __init__(self, console: Console):
        self.console = console

    def confirm(self, message: str, default: bool = False) -> bool:
        self.console.plain(f"{message} [auto-yes]")
        return True
