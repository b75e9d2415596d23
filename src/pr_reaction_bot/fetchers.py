"""Pull-request fetchers for the supported code-review services.

Each fetcher turns a :class:`MatchResult` into a :class:`PullRequest` with a
couple of REST calls. Any failure is raised as :class:`FetchError`; its
message is shown to the user as-is.
"""

import logging
import re
from urllib.parse import quote, urlparse

import requests

from pr_reaction_bot.config import BitbucketConfig, GitHubConfig, GitLabConfig
from pr_reaction_bot.matcher import MatchResult
from pr_reaction_bot.models import PullRequest

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """The pull request could not be fetched."""


def _host_pattern(host: str) -> str:
    """Regex for ``host`` with or without scheme, e.g. ``bitbucket.example.com``."""
    parsed = urlparse(host if "://" in host else f"https://{host}")
    return re.escape(parsed.netloc + parsed.path.rstrip("/"))


class _HttpFetcher:
    """Shared request handling; subclasses implement ``fetch``."""

    service = "service"

    def __init__(self, session: requests.Session, timeout: int) -> None:
        self._session = session
        self._timeout = timeout

    def _get_response(self, url: str, match: MatchResult) -> requests.Response:
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise FetchError(f"{self.service} is not reachable: {exc}") from exc

        if resp.status_code == 404:
            raise FetchError(
                f"pull request not found: {match.project}/{match.repo}#{match.number}"
            )
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise FetchError(f"{self.service} returned an error: {exc}") from exc
        return resp

    def _json(self, resp: requests.Response):
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(f"{self.service} returned invalid JSON: {exc}") from exc

    def _get(self, url: str, match: MatchResult):
        return self._json(self._get_response(url, match))


class BitbucketFetcher(_HttpFetcher):
    service = "Bitbucket"

    def __init__(self, config: BitbucketConfig, timeout: int = 10, session=None) -> None:
        session = session or requests.Session()
        if config.api_key:
            session.headers["Authorization"] = f"Bearer {config.api_key}"
        else:
            session.auth = (config.username, config.password)
        super().__init__(session, timeout)
        self._base_url = config.host.rstrip("/")
        if "://" not in self._base_url:
            self._base_url = f"https://{self._base_url}"
        self.example = f"{self._base_url}/projects/PROJ/repos/repo/pull-requests/1"
        self.pattern = config.pattern or (
            _host_pattern(config.host)
            + r"/projects/(?P<project>[^/\s>|]+)/repos/(?P<repo>[^/\s>|]+)"
            r"/pull-requests/(?P<number>\d+)"
        )

    def fetch(self, match: MatchResult) -> PullRequest:
        url = (
            f"{self._base_url}/rest/api/1.0/projects/{match.project}"
            f"/repos/{match.repo}/pull-requests/{match.number}"
        )
        data = self._get(url, match)
        try:
            reviewers = data.get("reviewers", [])
            return PullRequest(
                name=data.get("title", ""),
                merged=data["state"] == "MERGED",
                declined=data["state"] == "DECLINED",
                in_review=len(reviewers) > 0,
                approvers=tuple(
                    r["user"]["name"] for r in reviewers if r.get("approved")
                ),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise FetchError(f"unexpected Bitbucket response: {exc}") from exc


class GitHubFetcher(_HttpFetcher):
    service = "GitHub"

    DEFAULT_PATTERN = (
        r"github\.com/(?P<project>[^/\s>|]+)/(?P<repo>[^/\s>|]+)/pull/(?P<number>\d+)"
    )

    def __init__(self, config: GitHubConfig, timeout: int = 10, session=None) -> None:
        session = session or requests.Session()
        session.headers["Accept"] = "application/vnd.github+json"
        if config.access_token:
            session.headers["Authorization"] = f"Bearer {config.access_token}"
        super().__init__(session, timeout)
        self._api_url = config.api_url.rstrip("/")
        self.pattern = config.pattern or self.DEFAULT_PATTERN
        self.example = "https://github.com/owner/repo/pull/1"

    def _get_all(self, url: str, match: MatchResult) -> list:
        """Collect every page of a list endpoint by following ``Link: next``."""
        items = []
        while url:
            resp = self._get_response(url, match)
            page = self._json(resp)
            if not isinstance(page, list):
                raise FetchError(f"unexpected {self.service} response: expected a list")
            items.extend(page)
            url = resp.links.get("next", {}).get("url")
        return items

    def fetch(self, match: MatchResult) -> PullRequest:
        url = f"{self._api_url}/repos/{match.project}/{match.repo}/pulls/{match.number}"
        data = self._get(url, match)
        reviews = self._get_all(f"{url}/reviews?per_page=100", match)
        try:
            # Only the latest review of each user counts.
            latest: dict[str, str] = {}
            for review in reviews:
                if review["state"] in ("APPROVED", "CHANGES_REQUESTED", "DISMISSED"):
                    latest[review["user"]["login"]] = review["state"]
            merged = bool(data.get("merged"))
            return PullRequest(
                name=data.get("title", ""),
                merged=merged,
                declined=data["state"] == "closed" and not merged,
                in_review=bool(reviews) or bool(data.get("requested_reviewers")),
                approvers=tuple(
                    user for user, state in latest.items() if state == "APPROVED"
                ),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise FetchError(f"unexpected GitHub response: {exc}") from exc


class GitLabFetcher(_HttpFetcher):
    service = "GitLab"

    def __init__(self, config: GitLabConfig, timeout: int = 10, session=None) -> None:
        session = session or requests.Session()
        if config.access_token:
            session.headers["PRIVATE-TOKEN"] = config.access_token
        super().__init__(session, timeout)
        self._base_url = config.host.rstrip("/")
        if "://" not in self._base_url:
            self._base_url = f"https://{self._base_url}"
        self.example = f"{self._base_url}/group/repo/-/merge_requests/1"
        self.pattern = config.pattern or (
            _host_pattern(config.host)
            + r"/(?P<project>[^\s>|]+?)/(?P<repo>[^/\s>|]+)/(?:-/)?merge_requests/(?P<number>\d+)"
        )

    def fetch(self, match: MatchResult) -> PullRequest:
        project_id = quote(f"{match.project}/{match.repo}", safe="")
        url = f"{self._base_url}/api/v4/projects/{project_id}/merge_requests/{match.number}"
        data = self._get(url, match)
        approvals = self._get(f"{url}/approvals", match)
        try:
            return PullRequest(
                name=data.get("title", ""),
                merged=data["state"] == "merged",
                declined=data["state"] == "closed",
                in_review=bool(data.get("reviewers")) or data.get("user_notes_count", 0) > 0,
                approvers=tuple(
                    a["user"]["username"] for a in approvals.get("approved_by", [])
                ),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise FetchError(f"unexpected GitLab response: {exc}") from exc
