"""Pull-request command: mirrors a PR's review state as reactions on the message."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor

from pr_reaction_bot.commands import Command, CommandRegistry
from pr_reaction_bot.config import Config
from pr_reaction_bot.fetchers import (
    BitbucketFetcher,
    FetchError,
    GitHubFetcher,
    GitLabFetcher,
)
from pr_reaction_bot.matcher import RegexMatcher
from pr_reaction_bot.models import (
    Help,
    MessageRef,
    PullRequest,
    ReactionAction,
    ReactionChange,
    Reactions,
    SlackMessage,
)
from pr_reaction_bot.slack_client import SlackClient

logger = logging.getLogger(__name__)

ADD = ReactionAction.ADD
REMOVE = ReactionAction.REMOVE


def plan_reactions(pr: PullRequest, reactions: Reactions) -> list[ReactionChange]:
    """Return the reaction changes that reflect ``pr``.

    Evaluation order (first match wins):
      1. merged    -> approved and merged badges, drop in-review
      2. declined  -> declined badge, drop in-review and approved
      3. approvers -> approved badge, drop in-review and declined
      4. in_review -> in-review badge
    Otherwise nothing changes.
    """
    if pr.merged:
        return [
            ReactionChange(REMOVE, reactions.in_review),
            ReactionChange(ADD, reactions.approved),
            ReactionChange(ADD, reactions.merged),
        ]
    if pr.declined:
        return [
            ReactionChange(REMOVE, reactions.in_review),
            ReactionChange(REMOVE, reactions.approved),
            ReactionChange(ADD, reactions.declined),
        ]
    if pr.approvers:
        return [
            ReactionChange(REMOVE, reactions.in_review),
            ReactionChange(REMOVE, reactions.declined),
            ReactionChange(ADD, reactions.approved),
        ]
    if pr.in_review:
        return [ReactionChange(ADD, reactions.in_review)]
    return []


def apply_reactions(
    client: SlackClient, ref: MessageRef, changes: list[ReactionChange]
) -> None:
    """Issue ``changes`` against the message in order.

    Add and remove are idempotent on Slack's side, so the changes are applied
    blindly; the current reactions are only read for logging.
    """
    current = client.get_reactions(ref)
    logger.debug("Current reactions on %s: %s", ref.timestamp, sorted(current))

    for change in changes:
        if change.action is REMOVE:
            client.remove_reaction(change.name, ref)
        else:
            client.add_reaction(change.name, ref)


def _log_outcome(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Updating reactions failed: %s", exc, exc_info=exc)


class PullRequestCommand(Command):
    """Reacts to messages linking a pull request of one integration.

    The fetch happens on the caller's thread; updating reactions is handed to
    ``executor`` and :meth:`execute` returns its future.
    """

    def __init__(
        self,
        slack_client: SlackClient,
        fetcher,
        pattern: str,
        reactions: Reactions | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._slack = slack_client
        self._fetcher = fetcher
        self._matcher = RegexMatcher(pattern)
        self._reactions = reactions or Reactions()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="reactions"
        )

    def matches(self, msg: SlackMessage) -> bool:
        return self._matcher.match(msg.text) is not None

    def execute(self, msg: SlackMessage) -> Future | None:
        match = self._matcher.match(msg.text)
        if match is None:
            return None

        try:
            pr = self._fetcher.fetch(match)
        except FetchError as exc:
            logger.info(
                "Fetching %s/%s#%d failed: %s",
                match.project,
                match.repo,
                match.number,
                exc,
            )
            self._slack.reply_error(msg, exc)
            return None

        changes = plan_reactions(pr, self._reactions)
        logger.info(
            "PR %s/%s#%d (merged=%s declined=%s approvers=%d in_review=%s): %s",
            match.project,
            match.repo,
            match.number,
            pr.merged,
            pr.declined,
            len(pr.approvers),
            pr.in_review,
            ", ".join(f"{c.action.value} :{c.name}:" for c in changes) or "no change",
        )

        future = self._executor.submit(
            apply_reactions, self._slack, MessageRef.from_message(msg), changes
        )
        future.add_done_callback(_log_outcome)
        return future

    def help(self) -> list[Help]:
        r = self._reactions
        return [
            Help(
                command=f"{self._fetcher.service} pull request",
                description=(
                    f"Post a link matching `{self._matcher.pattern}` and the bot "
                    f"tracks its review state: :{r.in_review}: in review, "
                    f":{r.approved}: approved, :{r.declined}: declined, "
                    f":{r.merged}: merged."
                ),
                examples=[self._fetcher.example],
            )
        ]

    def close(self) -> None:
        """Wait for pending reaction updates to finish."""
        self._executor.shutdown(wait=True)


def get_commands(
    slack_client: SlackClient,
    config: Config,
    executor: Executor | None = None,
) -> CommandRegistry:
    """Build one command per configured integration.

    An empty config yields an empty registry.
    """
    fetchers = []
    if config.bitbucket is not None:
        fetchers.append(BitbucketFetcher(config.bitbucket, timeout=config.http_timeout))
    if config.github is not None:
        fetchers.append(GitHubFetcher(config.github, timeout=config.http_timeout))
    if config.gitlab is not None:
        fetchers.append(GitLabFetcher(config.gitlab, timeout=config.http_timeout))

    if fetchers and executor is None:
        executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="reactions")

    registry = CommandRegistry()
    for fetcher in fetchers:
        logger.info("Watching %s pull requests: %s", fetcher.service, fetcher.pattern)
        registry.add_command(
            PullRequestCommand(
                slack_client,
                fetcher,
                fetcher.pattern,
                reactions=config.reactions,
                executor=executor,
            )
        )
    return registry
