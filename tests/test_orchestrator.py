from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import make_config
from docsbump.config import AppConfig
from docsbump.errors import ConfigurationError
from docsbump.github_gateway import GitHubGateway
from docsbump.models import AffectedFile, PullRequest, UpgradeCheck, UpgradeOutcome
from docsbump.observability import configure_logging
from docsbump.orchestrator import UpgradeOrchestrator


class FakeTarget:
    slug = "angular/angular"

    def __init__(self, current_sha: str = "aaa1111") -> None:
        self.current_sha = current_sha
        self.reads: list[tuple[str, str]] = []

    def get_file_contents(self, path: str, ref: str) -> str:
        self.reads.append((path, ref))
        script = f"node ./tools/extract.js {self.current_sha}"
        return json.dumps({"scripts": {"extract-cli-command-docs": script}})


class FakeSource:
    slug = "angular/cli-builds"

    def __init__(self, latest_sha: str = "bbb2222", files: tuple[str, ...] = ("help/foo.md",)):
        self.latest_sha = latest_sha
        self.files = files

    def get_latest_sha(self, branch: str) -> str:
        _ = branch
        return self.latest_sha

    def get_affected_files(self, base: str, head: str) -> list[AffectedFile]:
        _ = base, head
        return [AffectedFile(filename=name) for name in self.files]


class FakeReport:
    slug = "docs-bot/upgrades"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.issues: list[tuple[str, str]] = []

    def create_issue(self, title: str, body: str) -> int:
        if self.fail:
            raise RuntimeError("issue creation failed")
        self.issues.append((title, body))
        return 5


class FakeRepo:
    def __init__(self, fail_destroy: bool = False) -> None:
        self.fail_destroy = fail_destroy
        self.destroy_calls = 0

    def destroy(self) -> None:
        self.destroy_calls += 1
        if self.fail_destroy:
            raise OSError("busy")


class FakeReconciler:
    def __init__(self, outcome: UpgradeOutcome | None = None, error: Exception | None = None):
        self.outcome = outcome
        self.error = error
        self.calls: list[tuple[object, UpgradeCheck, str]] = []

    def reconcile(self, repo: object, check: UpgradeCheck, branch: str) -> UpgradeOutcome:
        self.calls.append((repo, check, branch))
        if self.error is not None:
            raise self.error
        assert self.outcome is not None
        return self.outcome


def _orchestrator(
    config: AppConfig,
    *,
    target: FakeTarget | None = None,
    source: FakeSource | None = None,
    report: FakeReport | None = None,
    repo: FakeRepo | None = None,
) -> tuple[UpgradeOrchestrator, list[AppConfig]]:
    factory_calls: list[AppConfig] = []
    working_copy = repo or FakeRepo()

    def factory(cfg: AppConfig) -> FakeRepo:
        factory_calls.append(cfg)
        return working_copy

    orch = UpgradeOrchestrator(
        config,
        target=target or FakeTarget(),  # type: ignore[arg-type]
        source=source or FakeSource(),  # type: ignore[arg-type]
        report=report,  # type: ignore[arg-type]
        working_copy_factory=factory,  # type: ignore[arg-type]
    )
    return orch, factory_calls


@pytest.fixture
def removed_credentials(monkeypatch: pytest.MonkeyPatch) -> list[Path]:
    removed: list[Path] = []
    monkeypatch.setattr("docsbump.orchestrator.remove_credentials", removed.append)
    return removed


def test_refs_already_match(tmp_path: Path) -> None:
    orch, factory_calls = _orchestrator(
        make_config(tmp_path),
        target=FakeTarget("abc1234"),
        source=FakeSource("abc1234567"),
    )

    outcome = orch.check_and_upgrade()

    assert outcome.status == "up_to_date"
    assert outcome.check.needs_upgrade is False
    assert outcome.reason == "Already using the latest SHA (abc1234)."
    assert factory_calls == []


def test_no_watched_files_changed(tmp_path: Path) -> None:
    orch, factory_calls = _orchestrator(
        make_config(tmp_path), source=FakeSource(files=("lib/index.js",))
    )

    outcome = orch.check_and_upgrade("main")

    assert outcome.status == "up_to_date"
    assert outcome.reason == "No 'help/**' files changed between aaa1111 and bbb2222."
    assert factory_calls == []


def test_upgrade_runs_reconciler_and_destroys_working_copy(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    repo = FakeRepo()
    target = FakeTarget()
    orch, factory_calls = _orchestrator(config, target=target, repo=repo)
    check = UpgradeCheck(current_sha="aaa1111", latest_sha="bbb2222", needs_upgrade=True)
    new_pr = PullRequest(number=99, html_url="https://example/pr/99")
    reconciler = FakeReconciler(
        UpgradeOutcome(status="pr_created", check=check, reason="Opened #99", pull_requests=(new_pr,))
    )
    orch._reconciler = reconciler  # type: ignore[assignment]

    outcome = orch.check_and_upgrade("release-1")

    assert outcome.pull_request == new_pr
    assert factory_calls == [config]
    assert reconciler.calls == [(repo, check, "release-1")]
    assert target.reads == [("aio/package.json", "release-1")]
    assert repo.destroy_calls == 1


def test_destroy_failure_is_ignored(tmp_path: Path) -> None:
    repo = FakeRepo(fail_destroy=True)
    orch, _ = _orchestrator(make_config(tmp_path), repo=repo)
    check = UpgradeCheck(current_sha="aaa1111", latest_sha="bbb2222", needs_upgrade=True)
    orch._reconciler = FakeReconciler(  # type: ignore[assignment]
        UpgradeOutcome(status="pr_exists", check=check, reason="exists")
    )

    assert orch.check_and_upgrade().status == "pr_exists"
    assert repo.destroy_calls == 1


def test_failure_in_ci_cleans_up_reports_and_reraises(
    tmp_path: Path, removed_credentials: list[Path]
) -> None:
    configure_logging(verbose=None)
    config = make_config(tmp_path, ci=True, token="t0k3n")
    repo = FakeRepo()
    report = FakeReport()
    orch, _ = _orchestrator(config, repo=repo, report=report)
    orch._reconciler = FakeReconciler(error=RuntimeError("push rejected"))  # type: ignore[assignment]

    with pytest.raises(RuntimeError, match="push rejected"):
        orch.check_and_upgrade()

    assert repo.destroy_calls == 1
    assert removed_credentials == [config.automation.credentials_path]
    assert len(report.issues) == 1
    title, body = report.issues[0]
    assert title == "[upgrade-cli-src] Error while checking and upgrading"
    assert body.startswith("**Error:**\n```\nTraceback")
    assert "RuntimeError: push rejected" in body
    assert "\n##\n**Logs:**\n```\n" in body
    assert "event=upgrade_needed" in body


def test_failure_outside_ci_does_not_report(
    tmp_path: Path, removed_credentials: list[Path]
) -> None:
    report = FakeReport()
    orch, _ = _orchestrator(make_config(tmp_path), report=report, target=FakeTarget("zzz"))

    with pytest.raises(ConfigurationError):
        orch.check_and_upgrade()

    assert report.issues == []
    assert len(removed_credentials) == 1


def test_report_failure_does_not_mask_primary_error(
    tmp_path: Path, removed_credentials: list[Path]
) -> None:
    _ = removed_credentials
    orch, _ = _orchestrator(
        make_config(tmp_path, ci=True, token="t"),
        report=FakeReport(fail=True),
        source=FakeSource(latest_sha=""),
    )

    with pytest.raises(ConfigurationError, match="The SHA is empty"):
        orch.check_and_upgrade()


def test_ci_without_report_repository_skips_reporting(
    tmp_path: Path, removed_credentials: list[Path]
) -> None:
    _ = removed_credentials
    orch, _ = _orchestrator(
        make_config(tmp_path, ci=True, token="t", with_report=False),
        source=FakeSource(latest_sha=""),
    )

    with pytest.raises(ConfigurationError):
        orch.check_and_upgrade()


def test_working_copy_failure_propagates_without_destroy(
    tmp_path: Path, removed_credentials: list[Path]
) -> None:
    def factory(cfg: AppConfig) -> FakeRepo:
        _ = cfg
        raise OSError("disk full")

    orch = UpgradeOrchestrator(
        make_config(tmp_path),
        target=FakeTarget(),  # type: ignore[arg-type]
        source=FakeSource(),  # type: ignore[arg-type]
        working_copy_factory=factory,  # type: ignore[arg-type]
    )

    with pytest.raises(OSError, match="disk full"):
        orch.check_and_upgrade()
    assert len(removed_credentials) == 1


def test_check_only_returns_whether_up_to_date(tmp_path: Path) -> None:
    up_to_date, _ = _orchestrator(
        make_config(tmp_path), target=FakeTarget("bbb2222"), source=FakeSource("bbb2222")
    )
    outdated, factory_calls = _orchestrator(make_config(tmp_path))

    assert up_to_date.check_only() is True
    assert outdated.check_only("main") is False
    assert factory_calls == []


def test_check_only_failure_is_reported_in_ci(tmp_path: Path) -> None:
    report = FakeReport()
    orch, _ = _orchestrator(
        make_config(tmp_path, ci=True, token="t"),
        report=report,
        target=FakeTarget("not-a-sha"),
    )

    with pytest.raises(ConfigurationError):
        orch.check_only()

    assert [title for title, _ in report.issues] == [
        "[upgrade-cli-src] Error while checking only"
    ]


def test_from_config_builds_gateways(tmp_path: Path) -> None:
    orch = UpgradeOrchestrator.from_config(make_config(tmp_path))

    assert orch._target == GitHubGateway("angular", "angular")
    assert orch._report == GitHubGateway("docs-bot", "upgrades")

    no_report = UpgradeOrchestrator.from_config(make_config(tmp_path, with_report=False))
    assert no_report._report is None
