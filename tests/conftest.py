from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
import re

import pytest

from docsbump import observability
from docsbump.config import (
    AppConfig,
    AutomationConfig,
    IdentityConfig,
    RepoRef,
    RuntimeConfig,
    TrackedFileConfig,
)


def make_config(
    tmp_path: Path,
    *,
    ci: bool = False,
    token: str | None = None,
    labels: tuple[str, ...] = ("comp: docs-infra", "PR action: review"),
    with_report: bool = True,
) -> AppConfig:
    return AppConfig(
        target=RepoRef(owner="angular", name="angular"),
        default_branch="main",
        fork=RepoRef(owner="docs-bot", name="angular"),
        source=RepoRef(owner="angular", name="cli-builds"),
        watched_prefix="help/",
        tracked=TrackedFileConfig(
            path="aio/package.json",
            script_name="extract-cli-command-docs",
            script_pattern=re.compile(r"^node \S+ ([\da-f]+)$"),
        ),
        automation=AutomationConfig(
            branch_prefix="upgrade-cli-src",
            commit_message_prefix="build(docs-infra): upgrade cli command docs sources to ",
            labels=labels,
            workspace_root=tmp_path / "work",
        ),
        report=RepoRef(owner="docs-bot", name="upgrades") if with_report else None,
        identity=IdentityConfig(user_name="Docs Bot", user_email="bot@example.com"),
        runtime=RuntimeConfig(ci=ci, github_token=token),
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return make_config(tmp_path)


@pytest.fixture(autouse=True)
def restore_docsbump_logger_state() -> Iterator[None]:
    logger = logging.getLogger("docsbump")
    original_handlers = list(logger.handlers)
    original_level = logger.level
    original_propagate = logger.propagate
    try:
        yield
    finally:
        logger.handlers.clear()
        for handler in original_handlers:
            logger.addHandler(handler)
        logger.setLevel(original_level)
        logger.propagate = original_propagate
        observability.reset_captured_logs()
