from __future__ import annotations

import logging
import traceback
from typing import Callable

from docsbump.config import AppConfig
from docsbump.detector import UpgradeDetector, shas_match
from docsbump.git_ops import GitRepo
from docsbump.github_gateway import GitHubGateway
from docsbump.models import UpgradeOutcome
from docsbump.observability import (
    best_effort,
    captured_log_lines,
    log_event,
    reset_captured_logs,
)
from docsbump.reconciler import UpgradeReconciler
from docsbump.workspace import prepare_working_copy, remove_credentials


LOGGER = logging.getLogger("docsbump.orchestrator")

WorkingCopyFactory = Callable[[AppConfig], GitRepo]


class UpgradeOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        *,
        target: GitHubGateway,
        source: GitHubGateway,
        report: GitHubGateway | None = None,
        working_copy_factory: WorkingCopyFactory = prepare_working_copy,
    ) -> None:
        self._config = config
        self._target = target
        self._report = report
        self._detector = UpgradeDetector(config, target=target, source=source)
        self._reconciler = UpgradeReconciler(config, target=target)
        self._working_copy_factory = working_copy_factory

    @classmethod
    def from_config(cls, config: AppConfig) -> UpgradeOrchestrator:
        report = (
            GitHubGateway(config.report.owner, config.report.name)
            if config.report is not None
            else None
        )
        return cls(
            config,
            target=GitHubGateway(config.target.owner, config.target.name),
            source=GitHubGateway(config.source.owner, config.source.name),
            report=report,
        )

    def check_and_upgrade(self, branch: str | None = None) -> UpgradeOutcome:
        branch = branch or self._config.default_branch
        reset_captured_logs()
        try:
            log_event(LOGGER, "upgrade_check_started", branch=branch, mode="upgrade")
            check = self._detector.check_needs_upgrade(branch)

            if not check.needs_upgrade:
                if shas_match(check.current_sha, check.latest_sha):
                    reason = f"Already using the latest SHA ({check.current_sha})."
                else:
                    reason = (
                        f"No '{self._config.watched_prefix}**' files changed between "
                        f"{check.current_sha} and {check.latest_sha}."
                    )
                log_event(LOGGER, "upgrade_not_needed", branch=branch, reason=reason)
                return UpgradeOutcome(status="up_to_date", check=check, reason=reason)

            log_event(
                LOGGER,
                "upgrade_needed",
                branch=branch,
                current_sha=check.current_sha,
                latest_sha=check.latest_sha,
            )
            repo = self._working_copy_factory(self._config)
            try:
                outcome = self._reconciler.reconcile(repo, check, branch)
            except Exception:
                best_effort(LOGGER, "destroy_working_copy", repo.destroy)
                raise
            best_effort(LOGGER, "destroy_working_copy", repo.destroy)

            if outcome.status == "pr_created" and outcome.pull_request is not None:
                log_event(
                    LOGGER,
                    "upgrade_completed",
                    branch=branch,
                    pr_number=outcome.pull_request.number,
                    pr_url=outcome.pull_request.html_url,
                    superseded=outcome.superseded,
                )
            return outcome
        except Exception as exc:
            best_effort(
                LOGGER,
                "remove_credentials",
                lambda: remove_credentials(self._config.automation.credentials_path),
            )
            best_effort(
                LOGGER,
                "report_error",
                lambda: self._report_error("checking and upgrading", exc),
            )
            raise

    def check_only(self, branch: str | None = None) -> bool:
        """Return True when the tracked SHA is up to date for ``branch``."""
        branch = branch or self._config.default_branch
        reset_captured_logs()
        try:
            log_event(LOGGER, "upgrade_check_started", branch=branch, mode="check")
            return not self._detector.check_needs_upgrade(branch).needs_upgrade
        except Exception as exc:
            best_effort(
                LOGGER,
                "report_error",
                lambda: self._report_error("checking only", exc),
            )
            raise

    def _report_error(self, action: str, exc: BaseException) -> None:
        if not self._config.runtime.ci:
            return
        if self._report is None:
            log_event(LOGGER, "failure_report_skipped", reason="no report repository configured")
            return

        log_event(LOGGER, "failure_report_started", action=action)
        title = f"[{self._config.automation.branch_prefix}] Error while {action}"
        body = (
            _code_block("Error", _format_exception(exc))
            + "\n##\n"
            + _code_block("Logs", "\n".join(captured_log_lines()))
        )
        number = self._report.create_issue(title, body)
        log_event(LOGGER, "failure_issue_created", issue_number=number, repo=self._report.slug)


def _code_block(header: str, code: str) -> str:
    return f"**{header}:**\n```\n{code}\n```\n"


def _format_exception(exc: BaseException) -> str:
    return "".join(traceback.format_exception(exc)).rstrip()
