"""Command interface and the dispatcher that owns the registered commands."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pr_reaction_bot.models import Help, SlackMessage

logger = logging.getLogger(__name__)


class Command(ABC):
    @abstractmethod
    def matches(self, msg: SlackMessage) -> bool:
        """Return True if this command wants to handle ``msg``."""

    @abstractmethod
    def execute(self, msg: SlackMessage):
        """Handle ``msg``. Only called after :meth:`matches` returned True."""

    def help(self) -> list[Help]:
        return []

    def close(self) -> None:
        """Release resources; called once on shutdown."""


class CommandRegistry:
    """Ordered list of commands built once at startup.

    :meth:`run` hands an event to the first command that matches it.
    """

    def __init__(self, commands: list[Command] | None = None) -> None:
        self._commands: list[Command] = list(commands or [])

    def add_command(self, command: Command) -> None:
        self._commands.append(command)

    def count(self) -> int:
        return len(self._commands)

    def __iter__(self):
        return iter(self._commands)

    def run(self, msg: SlackMessage) -> bool:
        """Dispatch ``msg``; return True if a command handled it."""
        for command in self._commands:
            if command.matches(msg):
                logger.debug(
                    "%s handles message %s in %s",
                    type(command).__name__,
                    msg.ts,
                    msg.channel_id,
                )
                command.execute(msg)
                return True
        return False

    def get_help(self) -> list[Help]:
        entries = []
        for command in self._commands:
            entries.extend(command.help())
        return entries

    def close(self) -> None:
        for command in self._commands:
            command.close()


def format_help(entries: list[Help]) -> str:
    lines = []
    for entry in entries:
        lines.append(f"*{entry.command}*: {entry.description}")
        lines.extend(f"  • `{example}`" for example in entry.examples)
    return "\n".join(lines)


class HelpCommand(Command):
    """Replies to ``help`` with the help entries of every registered command."""

    def __init__(self, slack_client, registry: CommandRegistry) -> None:
        self._slack = slack_client
        self._registry = registry

    def matches(self, msg: SlackMessage) -> bool:
        return (msg.text or "").strip().lower() == "help"

    def execute(self, msg: SlackMessage) -> None:
        text = format_help(self._registry.get_help()) or "No commands available."
        self._slack.post_message(msg.channel_id, text, thread_ts=msg.thread_ts or msg.ts)

    def help(self) -> list[Help]:
        return [Help(command="help", description="Show this help.", examples=["help"])]
