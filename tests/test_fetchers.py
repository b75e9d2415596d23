"""Tests for the Bitbucket, GitHub and GitLab pull-request fetchers."""

import pytest
import requests

from pr_reaction_bot.config import BitbucketConfig, GitHubConfig, GitLabConfig
from pr_reaction_bot.fetchers import (
    BitbucketFetcher,
    FetchError,
    GitHubFetcher,
    GitLabFetcher,
)
from pr_reaction_bot.matcher import MatchResult, RegexMatcher
from pr_reaction_bot.models import PullRequest

MATCH = MatchResult(project="foo", repo="bar", number=1337)


def _response(mocker, payload, status_code=200, links=None):
    resp = mocker.Mock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.raise_for_status = mocker.Mock()
    resp.links = links or {}
    return resp


@pytest.fixture()
def session(mocker):
    s = requests.Session()
    mocker.patch.object(s, "get")
    return s


# ── Bitbucket ──────────────────────────────────────────────────────


class TestBitbucketFetcher:
    def make_fetcher(self, session, **overrides):
        config = BitbucketConfig(host="https://bitbucket.example.com", api_key="secret")
        for key, value in overrides.items():
            setattr(config, key, value)
        return BitbucketFetcher(config, timeout=5, session=session)

    def test_requests_pull_request_with_api_key(self, mocker, session):
        session.get.return_value = _response(mocker, {"title": "Fix", "state": "OPEN"})
        fetcher = self.make_fetcher(session)

        fetcher.fetch(MATCH)

        session.get.assert_called_once_with(
            "https://bitbucket.example.com/rest/api/1.0/projects/foo/repos/bar/pull-requests/1337",
            timeout=5,
        )
        assert session.headers["Authorization"] == "Bearer secret"

    def test_basic_auth(self, session):
        self.make_fetcher(session, api_key=None, username="bot", password="pw")
        assert session.auth == ("bot", "pw")

    def test_merged(self, mocker, session):
        session.get.return_value = _response(
            mocker,
            {
                "title": "Fix",
                "state": "MERGED",
                "reviewers": [{"user": {"name": "alice"}, "approved": True}],
            },
        )

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr == PullRequest(
            name="Fix", merged=True, in_review=True, approvers=("alice",)
        )

    def test_declined(self, mocker, session):
        session.get.return_value = _response(mocker, {"state": "DECLINED"})

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.declined is True
        assert pr.merged is False

    def test_open_with_reviewers(self, mocker, session):
        session.get.return_value = _response(
            mocker,
            {
                "state": "OPEN",
                "reviewers": [
                    {"user": {"name": "alice"}, "approved": False, "status": "NEEDS_WORK"},
                    {"user": {"name": "bob"}, "approved": True, "status": "APPROVED"},
                ],
            },
        )

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.in_review is True
        assert pr.approvers == ("bob",)

    def test_not_found(self, mocker, session):
        session.get.return_value = _response(mocker, {}, status_code=404)

        with pytest.raises(FetchError, match="pull request not found: foo/bar#1337"):
            self.make_fetcher(session).fetch(MATCH)

    def test_server_error(self, mocker, session):
        resp = _response(mocker, {}, status_code=500)
        resp.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        session.get.return_value = resp

        with pytest.raises(FetchError, match="Bitbucket returned an error"):
            self.make_fetcher(session).fetch(MATCH)

    def test_connection_error(self, session):
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(FetchError, match="Bitbucket is not reachable"):
            self.make_fetcher(session).fetch(MATCH)

    def test_unexpected_payload(self, mocker, session):
        session.get.return_value = _response(mocker, {"title": "no state"})

        with pytest.raises(FetchError, match="unexpected Bitbucket response"):
            self.make_fetcher(session).fetch(MATCH)

    def test_default_pattern_matches_host_urls(self, session):
        fetcher = self.make_fetcher(session)
        matcher = RegexMatcher(fetcher.pattern)

        result = matcher.match(
            "<https://bitbucket.example.com/projects/FOO/repos/bar/pull-requests/12/overview>"
        )

        assert result == MatchResult(project="FOO", repo="bar", number=12)
        assert matcher.match("https://other.example.com/projects/FOO/repos/bar/pull-requests/12") is None

    def test_pattern_override(self, session):
        fetcher = self.make_fetcher(session, pattern="custom/(?P<project>.+)/(?P<repo>.+)/(?P<number>\\d+)")
        assert fetcher.pattern.startswith("custom/")


# ── GitHub ─────────────────────────────────────────────────────────


class TestGitHubFetcher:
    def make_fetcher(self, session, **overrides):
        config = GitHubConfig(access_token="ghp_token")
        for key, value in overrides.items():
            setattr(config, key, value)
        return GitHubFetcher(config, timeout=5, session=session)

    def test_requests_pull_and_reviews(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"title": "Add", "state": "open", "merged": False}),
            _response(mocker, []),
        ]

        self.make_fetcher(session).fetch(MATCH)

        urls = [call.args[0] for call in session.get.call_args_list]
        assert urls == [
            "https://api.github.com/repos/foo/bar/pulls/1337",
            "https://api.github.com/repos/foo/bar/pulls/1337/reviews?per_page=100",
        ]
        assert session.headers["Authorization"] == "Bearer ghp_token"

    def test_merged(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "closed", "merged": True}),
            _response(mocker, [{"user": {"login": "alice"}, "state": "APPROVED"}]),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.merged is True
        assert pr.declined is False
        assert pr.approvers == ("alice",)

    def test_closed_without_merge_is_declined(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "closed", "merged": False}),
            _response(mocker, []),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.declined is True
        assert pr.merged is False

    def test_latest_review_per_user_counts(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "open", "merged": False}),
            _response(
                mocker,
                [
                    {"user": {"login": "alice"}, "state": "APPROVED"},
                    {"user": {"login": "bob"}, "state": "APPROVED"},
                    {"user": {"login": "alice"}, "state": "CHANGES_REQUESTED"},
                    {"user": {"login": "bob"}, "state": "COMMENTED"},
                ],
            ),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.approvers == ("bob",)
        assert pr.in_review is True

    def test_reviews_follow_next_page(self, mocker, session):
        next_url = "https://api.github.com/repositories/1/pulls/1337/reviews?per_page=100&page=2"
        session.get.side_effect = [
            _response(mocker, {"state": "open", "merged": False}),
            _response(
                mocker,
                [{"user": {"login": "alice"}, "state": "CHANGES_REQUESTED"}],
                links={"next": {"url": next_url, "rel": "next"}},
            ),
            _response(mocker, [{"user": {"login": "alice"}, "state": "APPROVED"}]),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert session.get.call_args_list[2].args[0] == next_url
        assert pr.approvers == ("alice",)

    def test_reviews_not_a_list(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "open", "merged": False}),
            _response(mocker, {"message": "odd"}),
        ]

        with pytest.raises(FetchError, match="expected a list"):
            self.make_fetcher(session).fetch(MATCH)

    def test_requested_reviewers_mean_in_review(self, mocker, session):
        session.get.side_effect = [
            _response(
                mocker,
                {"state": "open", "merged": False, "requested_reviewers": [{"login": "carol"}]},
            ),
            _response(mocker, []),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.in_review is True
        assert pr.approvers == ()

    def test_not_found(self, mocker, session):
        session.get.return_value = _response(mocker, {}, status_code=404)

        with pytest.raises(FetchError, match="pull request not found"):
            self.make_fetcher(session).fetch(MATCH)

    def test_default_pattern(self, session):
        matcher = RegexMatcher(self.make_fetcher(session).pattern)

        result = matcher.match("https://github.com/acme/widgets/pull/7/files")

        assert result == MatchResult(project="acme", repo="widgets", number=7)


# ── GitLab ─────────────────────────────────────────────────────────


class TestGitLabFetcher:
    def make_fetcher(self, session):
        config = GitLabConfig(host="https://gitlab.example.com", access_token="glpat")
        return GitLabFetcher(config, timeout=5, session=session)

    def test_requests_merge_request_and_approvals(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "opened"}),
            _response(mocker, {"approved_by": []}),
        ]

        self.make_fetcher(session).fetch(MatchResult(project="group/sub", repo="app", number=3))

        urls = [call.args[0] for call in session.get.call_args_list]
        assert urls == [
            "https://gitlab.example.com/api/v4/projects/group%2Fsub%2Fapp/merge_requests/3",
            "https://gitlab.example.com/api/v4/projects/group%2Fsub%2Fapp/merge_requests/3/approvals",
        ]
        assert session.headers["PRIVATE-TOKEN"] == "glpat"

    def test_approved(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "opened", "reviewers": [{"username": "dave"}]}),
            _response(mocker, {"approved_by": [{"user": {"username": "dave"}}]}),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr == PullRequest(in_review=True, approvers=("dave",))

    def test_closed_is_declined(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "closed"}),
            _response(mocker, {"approved_by": []}),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.declined is True

    def test_merged(self, mocker, session):
        session.get.side_effect = [
            _response(mocker, {"state": "merged", "user_notes_count": 2}),
            _response(mocker, {"approved_by": []}),
        ]

        pr = self.make_fetcher(session).fetch(MATCH)

        assert pr.merged is True
        assert pr.in_review is True

    def test_default_pattern_handles_subgroups(self, session):
        matcher = RegexMatcher(self.make_fetcher(session).pattern)

        result = matcher.match("https://gitlab.example.com/group/sub/app/-/merge_requests/3")

        assert result == MatchResult(project="group/sub", repo="app", number=3)
