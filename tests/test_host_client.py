"""Tests for the gh-backed GitHub client."""

import pytest

from agentrace.core.host_client import PR_FIELDS, HostClient
from agentrace.core.models import CheckSource
from conftest import T0

PR_JSON = {
    "number": 12,
    "title": "Add widget cache",
    "headRefName": "feature/cache",
    "baseRefName": "main",
    "state": "OPEN",
    "author": {"login": "octocat"},
    "url": "https://github.com/acme/widgets/pull/12",
    "headRefOid": "abc123",
    "createdAt": "2025-03-01T12:00:00Z",
    "mergedAt": None,
    "additions": 40,
    "deletions": 3,
    "changedFiles": 2,
}


@pytest.fixture
def host(fake_runner, config):
    return HostClient(runner=fake_runner, config=config)


class TestPullRequests:
    def test_list_prs_for_branch__parses_pr_fields(self, host, fake_runner):
        fake_runner.add(["gh", "pr", "list", "--head", "feature/cache"], [PR_JSON])

        prs = host.list_prs_for_branch("/repo", "feature/cache")

        assert len(prs) == 1
        pr = prs[0]
        assert (pr.number, pr.head_branch, pr.author, pr.head_sha) == (12, "feature/cache", "octocat", "abc123")
        assert pr.created_at == T0
        assert pr.is_merged is False
        assert fake_runner.calls[0][-1] == ",".join(PR_FIELDS)

    def test_view_pr__includes_commit_shas_and_merge_state(self, host, fake_runner):
        merged = PR_JSON | {
            "state": "MERGED",
            "mergedAt": "2025-03-02T08:00:00Z",
            "commits": [{"oid": "c1"}, {"oid": "c2"}, {"messageHeadline": "no oid"}],
        }
        fake_runner.add(["gh", "pr", "view", "12"], merged)

        pr = host.view_pr("/repo", 12)

        assert pr.commit_shas == ["c1", "c2"]
        assert pr.is_merged is True

    def test_view_pr__returns_none_on_gh_failure(self, host, fake_runner):
        fake_runner.add(["gh", "pr", "view"], "not authenticated", returncode=1)

        assert host.view_pr("/repo", 12) is None

    def test_list_recent_prs__malformed_json_is_empty(self, host, fake_runner):
        fake_runner.add(["gh", "pr", "list"], "{not json")

        assert host.list_recent_prs("/repo", 5) == []

    def test_list_recent_prs__skips_entries_without_number(self, host, fake_runner):
        fake_runner.add(["gh", "pr", "list"], [PR_JSON, {"title": "broken"}])

        assert [pr.number for pr in host.list_recent_prs("/repo", 5)] == [12]


class TestChecks:
    def test_pr_checks__maps_check_runs_and_status_contexts(self, host, fake_runner):
        fake_runner.add(
            ["gh", "pr", "view", "12", "--json", "statusCheckRollup"],
            {
                "statusCheckRollup": [
                    {"__typename": "CheckRun", "name": "build", "status": "COMPLETED", "conclusion": "SUCCESS"},
                    {"__typename": "StatusContext", "context": "ci/legacy", "state": "PENDING"},
                    {"__typename": "StatusContext", "context": "ci/other", "state": "ERROR"},
                ]
            },
        )

        checks = host.pr_checks("/repo", 12)

        assert [(c.name, c.status, c.conclusion) for c in checks] == [
            ("build", "completed", "success"),
            ("ci/legacy", "in_progress", None),
            ("ci/other", "completed", "failure"),
        ]
        assert all(c.source == CheckSource.PR_CHECKS for c in checks)

    def test_check_runs_for_commit__uses_repo_placeholders(self, host, fake_runner):
        fake_runner.add(
            ["gh", "api", "repos/{owner}/{repo}/commits/abc123/check-runs"],
            {
                "check_runs": [
                    {
                        "id": 99,
                        "name": "SonarCloud Code Analysis",
                        "status": "completed",
                        "conclusion": "success",
                        "output": {"title": "Quality Gate passed", "summary": "2 New issues"},
                    }
                ]
            },
        )

        runs = host.check_runs_for_commit("/repo", "abc123")

        assert runs[0].check_run_id == 99
        assert runs[0].output_payload == "Quality Gate passed\n2 New issues"
        assert runs[0].source == CheckSource.CHECK_RUN

    def test_check_suites_for_commit__names_suites_by_app(self, host, fake_runner):
        fake_runner.add(
            ["gh", "api", "repos/{owner}/{repo}/commits/abc123/check-suites"],
            {"check_suites": [{"id": 5, "app": {"name": "GitHub Actions"}, "status": "queued"}, {"id": 6}]},
        )

        suites = host.check_suites_for_commit("/repo", "abc123")

        assert [s.name for s in suites] == ["GitHub Actions", "suite-6"]
        assert suites[0].source == CheckSource.CHECK_SUITE


class TestComments:
    def test_issue_comments__newest_first(self, host, fake_runner):
        fake_runner.add(
            ["gh", "api", "repos/{owner}/{repo}/issues/12/comments"],
            [
                {"body": "old", "created_at": "2025-03-01T10:00:00Z"},
                {"body": "", "created_at": "2025-03-01T11:00:00Z"},
                {"body": "new", "created_at": "2025-03-01T12:00:00Z"},
            ],
        )

        assert host.issue_comments("/repo", 12) == ["new", "old"]

    def test_check_run_annotations__joins_parts(self, host, fake_runner):
        fake_runner.add(
            ["gh", "api", "repos/{owner}/{repo}/check-runs/7/annotations"],
            [{"title": "Coverage", "message": "81.5% Coverage on New Code"}],
        )

        assert host.check_run_annotations("/repo", 7) == ["Coverage\n81.5% Coverage on New Code"]
