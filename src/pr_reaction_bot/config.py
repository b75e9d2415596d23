"""Configuration loading and validation for pr-reaction-bot."""

import logging
import os
import re
from dataclasses import dataclass, field, fields

import yaml

from pr_reaction_bot.models import Calendar, CalendarEvent, Reactions

logger = logging.getLogger(__name__)

KNOWN_KEYS = {
    "bitbucket",
    "github",
    "gitlab",
    "reactions",
    "calendars",
    "calendar_interval",
    "http_timeout",
}

REQUIRED_GROUPS = {"project", "repo", "number"}


@dataclass
class BitbucketConfig:
    host: str
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    pattern: str | None = None


@dataclass
class GitHubConfig:
    access_token: str | None = None
    api_url: str = "https://api.github.com"
    pattern: str | None = None


@dataclass
class GitLabConfig:
    host: str
    access_token: str | None = None
    pattern: str | None = None


@dataclass
class Config:
    bitbucket: BitbucketConfig | None = None
    github: GitHubConfig | None = None
    gitlab: GitLabConfig | None = None
    reactions: Reactions = field(default_factory=Reactions)
    calendars: list[Calendar] = field(default_factory=list)
    calendar_interval: int = 60
    http_timeout: int = 10


def validate_pattern(pattern: str, field_name: str) -> None:
    """Raise ValueError unless ``pattern`` compiles and captures project/repo/number."""
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"{field_name} is not a valid regex: {exc}")
    missing = REQUIRED_GROUPS - set(compiled.groupindex)
    if missing:
        raise ValueError(
            f"{field_name} is missing named groups: {', '.join(sorted(missing))}"
        )


def _parse_section(raw: dict, key: str, cls, required: tuple[str, ...] = ()):
    """Build an integration dataclass from a YAML mapping."""
    section = raw[key]
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' must be a mapping")

    allowed = {f.name for f in fields(cls)}
    for name in section:
        if name not in allowed:
            logger.warning("Unknown key '%s.%s' — ignoring", key, name)
    for name in required:
        if not section.get(name):
            raise ValueError(f"{key}.{name} is required")

    values = {
        name: str(value) for name, value in section.items()
        if name in allowed and value is not None
    }
    return cls(**values)


def _parse_reactions(raw_reactions) -> Reactions:
    if not isinstance(raw_reactions, dict):
        raise ValueError("'reactions' must be a mapping")
    allowed = {f.name for f in fields(Reactions)}
    values = {}
    for key, value in raw_reactions.items():
        if key not in allowed:
            logger.warning("Unknown reaction '%s' — ignoring", key)
            continue
        values[key] = str(value).strip(":")
    return Reactions(**values)


def _parse_calendars(raw_calendars) -> list[Calendar]:
    if not isinstance(raw_calendars, list):
        raise ValueError("'calendars' must be a list")

    calendars = []
    for i, entry in enumerate(raw_calendars):
        if not isinstance(entry, dict):
            raise ValueError(f"calendars[{i}] must be a mapping")
        if "path" not in entry:
            raise ValueError(f"calendars[{i}] is missing required field 'path'")

        events = []
        for j, event in enumerate(entry.get("events") or []):
            where = f"calendars[{i}].events[{j}]"
            if not isinstance(event, dict):
                raise ValueError(f"{where} must be a mapping")
            for required in ("pattern", "channel"):
                if required not in event:
                    raise ValueError(f"{where} is missing required field '{required}'")
            try:
                re.compile(event["pattern"])
            except re.error as exc:
                raise ValueError(f"{where}.pattern is not a valid regex: {exc}")
            commands = event.get("commands") or []
            if not isinstance(commands, list):
                raise ValueError(f"{where}.commands must be a list")
            events.append(
                CalendarEvent(
                    name=str(event.get("name", event["pattern"])),
                    pattern=event["pattern"],
                    channel=str(event["channel"]),
                    commands=[str(c) for c in commands],
                )
            )

        calendars.append(
            Calendar(
                name=str(entry.get("name", entry["path"])),
                path=os.path.expanduser(str(entry["path"])),
                events=events,
            )
        )
    return calendars


def _validate_config(config: Config) -> None:
    """Validate config values, raising ValueError on invalid fields."""
    for name in ("calendar_interval", "http_timeout"):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number, got {type(value).__name__}")
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")

    if config.bitbucket is not None:
        has_basic = config.bitbucket.username and config.bitbucket.password
        if not config.bitbucket.api_key and not has_basic:
            raise ValueError("bitbucket needs either api_key or username and password")

    for name in ("bitbucket", "github", "gitlab"):
        integration = getattr(config, name)
        if integration is not None and integration.pattern is not None:
            validate_pattern(integration.pattern, f"{name}.pattern")


def load_config(path: str | None = None) -> Config:
    """Load configuration from a YAML file.

    Config path resolution order:
    1. Explicit path argument
    2. PR_REACTION_BOT_CONFIG environment variable
    3. ~/.config/pr-reaction-bot/config.yaml
    """
    if path is None:
        path = os.environ.get("PR_REACTION_BOT_CONFIG")
    if path is None:
        path = os.path.expanduser("~/.config/pr-reaction-bot/config.yaml")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping, got {type(raw).__name__}")

    # Warn about unknown keys
    for key in raw:
        if key not in KNOWN_KEYS:
            logger.warning("Unknown config key '%s' — ignoring", key)

    config = Config()

    if "calendar_interval" in raw:
        config.calendar_interval = raw["calendar_interval"]
    if "http_timeout" in raw:
        config.http_timeout = raw["http_timeout"]

    # A section left empty (`github:`) counts as absent: integrations stay
    # off, reactions and calendars keep their defaults. `github: {}` turns
    # the integration on with default settings.
    if raw.get("bitbucket") is not None:
        config.bitbucket = _parse_section(raw, "bitbucket", BitbucketConfig, ("host",))
    if raw.get("github") is not None:
        config.github = _parse_section(raw, "github", GitHubConfig)
    if raw.get("gitlab") is not None:
        config.gitlab = _parse_section(raw, "gitlab", GitLabConfig, ("host",))

    if raw.get("reactions") is not None:
        config.reactions = _parse_reactions(raw["reactions"])

    if raw.get("calendars") is not None:
        config.calendars = _parse_calendars(raw["calendars"])

    _validate_config(config)

    return config
