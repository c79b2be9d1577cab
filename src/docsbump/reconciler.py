"""Branch and pull request reconciliation for one upgrade target.

Given an upgrade check that needs an upgrade, converge the fork and the
target repository to a single open pull request for the latest SHA:

* automation branches on ``origin`` without an open pull request are deleted;
* if the branch for the latest SHA already has an open pull request, nothing
  else happens;
* otherwise a new branch is created from the target branch tip, patched,
  committed, force-pushed and proposed, and the pull requests it supersedes
  are commented on. Superseded pull requests are never closed here.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
import logging

from docsbump.config import AppConfig
from docsbump.git_ops import GitOptions, GitRepo
from docsbump.github_gateway import GitHubGateway
from docsbump.models import PullRequest, UpgradeCheck, UpgradeOutcome
from docsbump.observability import best_effort, log_event
from docsbump.workspace import replace_in_file


LOGGER = logging.getLogger("docsbump.reconciler")
_MAX_CONCURRENT_REQUESTS = 8


def automation_branch_name(prefix: str, branch: str, sha: str) -> str:
    return f"{prefix}--{branch}--{sha}"


def superseded_pull_requests(
    open_prs_per_branch: dict[str, list[PullRequest]],
) -> list[PullRequest]:
    seen: set[int] = set()
    superseded: list[PullRequest] = []
    for prs in open_prs_per_branch.values():
        for pr in prs:
            if pr.number in seen:
                continue
            seen.add(pr.number)
            superseded.append(pr)
    return superseded


def build_commit_message(subject: str, superseded: list[PullRequest]) -> str:
    closes = "\n".join(f"Closes #{pr.number}" for pr in superseded)
    return f"{subject}\n\n{closes}".strip()


class UpgradeReconciler:
    def __init__(self, config: AppConfig, *, target: GitHubGateway) -> None:
        self._config = config
        self._target = target

    def reconcile(self, repo: GitRepo, check: UpgradeCheck, branch: str) -> UpgradeOutcome:
        automation = self._config.automation
        latest_sha = check.latest_sha
        local_branch = automation_branch_name(automation.branch_prefix, branch, latest_sha)
        subject = f"{automation.commit_message_prefix}{latest_sha}"

        candidates = [
            name
            for name in repo.get_remote_branches(GitRepo.ORIGIN)
            if name.startswith(automation.branch_prefix)
        ]
        open_prs_per_branch = self.open_prs_per_branch(candidates)
        self._cleanup_obsolete_branches(repo, candidates, open_prs_per_branch)

        existing = open_prs_per_branch.get(local_branch)
        if existing:
            log_event(
                LOGGER,
                "upgrade_pr_exists",
                latest_sha=latest_sha,
                branch=local_branch,
                pr_numbers=tuple(pr.number for pr in existing),
            )
            listing = "\n".join(f"  #{pr.number} ({pr.html_url})" for pr in existing)
            return UpgradeOutcome(
                status="pr_exists",
                check=check,
                reason=f"PR for latest SHA ({latest_sha}) already exists:\n{listing}",
                pull_requests=tuple(existing),
            )

        self._create_local_branch(repo, local_branch, branch)
        self._make_changes(repo, check)

        superseded = superseded_pull_requests(open_prs_per_branch)
        self._commit_and_push(repo, build_commit_message(subject, superseded))
        new_pr = self._submit_pull_request(local_branch, branch, subject)

        self._comment_on_superseded(superseded, new_pr)

        return UpgradeOutcome(
            status="pr_created",
            check=check,
            reason=f"Opened #{new_pr.number} ({new_pr.html_url})",
            pull_requests=(new_pr,),
            superseded=tuple(pr.number for pr in superseded),
        )

    def open_prs_per_branch(self, branches: list[str]) -> dict[str, list[PullRequest]]:
        """Map each branch with at least one open, relevant PR to those PRs.

        Lookups run concurrently; the result keeps the order of ``branches``.
        """
        if not branches:
            return {}
        prefix = self._config.automation.commit_message_prefix
        fork_owner = self._config.fork.owner
        workers = min(len(branches), _MAX_CONCURRENT_REQUESTS)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            prs_per_branch = list(
                pool.map(
                    lambda name: self._target.get_pull_requests(
                        head=f"{fork_owner}:{name}", state="all"
                    ),
                    branches,
                )
            )

        result: dict[str, list[PullRequest]] = {}
        for name, prs in zip(branches, prs_per_branch, strict=True):
            open_prs = [pr for pr in prs if pr.title.startswith(prefix) and pr.is_open]
            if open_prs:
                result[name] = open_prs
        log_event(
            LOGGER,
            "automation_branches_classified",
            candidate_count=len(branches),
            with_open_prs=len(result),
        )
        return result

    def _cleanup_obsolete_branches(
        self,
        repo: GitRepo,
        branches: list[str],
        open_prs_per_branch: dict[str, list[PullRequest]],
    ) -> None:
        for name in branches:
            if name in open_prs_per_branch:
                continue
            best_effort(
                LOGGER,
                "delete_obsolete_branch",
                lambda name=name: repo.delete_remote_branch(GitRepo.ORIGIN, name),
                branch=name,
            )

    def _create_local_branch(self, repo: GitRepo, local_branch: str, branch: str) -> None:
        log_event(
            LOGGER,
            "local_branch_created",
            branch=local_branch,
            source=f"{self._target.slug}#{branch}",
        )
        repo.fetch(GitRepo.UPSTREAM, branch, GitOptions(values=(("depth", "1"),)))
        repo.checkout("FETCH_HEAD", GitOptions(values=(("b", local_branch),)))

    def _make_changes(self, repo: GitRepo, check: UpgradeCheck) -> None:
        tracked_path = repo.directory / self._config.tracked.path
        replace_in_file(tracked_path, check.current_sha, check.latest_sha)

    def _commit_and_push(self, repo: GitRepo, message: str) -> None:
        log_event(LOGGER, "commit_and_push", remote=GitRepo.ORIGIN)
        repo.commit(message, GitOptions(flags=("all",)))
        repo.fetch(GitRepo.ORIGIN, options=GitOptions(flags=("unshallow",)))
        repo.push(GitRepo.ORIGIN, options=GitOptions(flags=("force",)))

    def _submit_pull_request(self, origin_branch: str, base: str, title: str) -> PullRequest:
        log_event(
            LOGGER,
            "pull_request_submitting",
            source=f"{self._config.fork.full_name}#{origin_branch}",
            destination=f"{self._target.slug}#{base}",
        )
        head = f"{self._config.fork.owner}:{origin_branch}"
        pr = self._target.create_pull_request(head, base, title)
        labels = self._config.automation.labels
        best_effort(
            LOGGER,
            "add_labels",
            lambda: self._target.add_labels(pr.number, labels),
            pr_number=pr.number,
        )
        return pr

    def _comment_on_superseded(self, superseded: list[PullRequest], new_pr: PullRequest) -> None:
        if not superseded:
            return
        body = f"Superseded by #{new_pr.number}."
        workers = min(len(superseded), _MAX_CONCURRENT_REQUESTS)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(
                    best_effort,
                    LOGGER,
                    "comment_on_superseded",
                    lambda number=pr.number: self._target.comment(number, body),
                    pr_number=pr.number,
                )
                for pr in superseded
            ]
            wait(futures)
