from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


PullRequestState = Literal["open", "closed", "all"]
UpgradeStatus = Literal["up_to_date", "pr_exists", "pr_created"]


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str
    title: str = ""
    state: str = "open"
    head_ref: str = ""

    @property
    def is_open(self) -> bool:
        return self.state == "open"


@dataclass(frozen=True)
class AffectedFile:
    filename: str


@dataclass(frozen=True)
class UpgradeCheck:
    current_sha: str
    latest_sha: str
    needs_upgrade: bool


@dataclass(frozen=True)
class UpgradeOutcome:
    status: UpgradeStatus
    check: UpgradeCheck
    reason: str
    pull_requests: tuple[PullRequest, ...] = ()
    superseded: tuple[int, ...] = ()

    @property
    def pull_request(self) -> PullRequest | None:
        if not self.pull_requests:
            return None
        return self.pull_requests[0]
