"""Shared data structures used across all components."""

from dataclasses import dataclass, field
from enum import Enum


class ReactionAction(Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass
class SlackMessage:
    channel_id: str  # raw channel ID
    ts: str  # message timestamp, identifies the message
    text: str  # message body
    user_id: str | None = None
    thread_ts: str | None = None
    is_bot: bool = False  # true if the sender is a bot user


@dataclass(frozen=True)
class MessageRef:
    channel: str
    timestamp: str

    @classmethod
    def from_message(cls, msg: SlackMessage) -> "MessageRef":
        return cls(channel=msg.channel_id, timestamp=msg.ts)


@dataclass(frozen=True)
class PullRequest:
    name: str = ""
    merged: bool = False
    declined: bool = False
    in_review: bool = False
    approvers: tuple[str, ...] = ()


@dataclass(frozen=True)
class Reactions:
    """Emoji names shown for each pull-request state."""

    in_review: str = "eyes"
    approved: str = "white_check_mark"
    declined: str = "x"
    merged: str = "twisted_rightwards_arrows"


@dataclass(frozen=True)
class ReactionChange:
    action: ReactionAction
    name: str  # emoji name, without colons


@dataclass
class CalendarEvent:
    """A rule that runs bot commands when a matching calendar event starts."""

    name: str
    pattern: str  # regex searched in the event summary
    channel: str
    commands: list[str] = field(default_factory=list)


@dataclass
class Calendar:
    name: str
    path: str  # path to an .ics file
    events: list[CalendarEvent] = field(default_factory=list)


@dataclass
class Help:
    """One entry of the bot's help text."""

    command: str
    description: str
    examples: list[str] = field(default_factory=list)
