from __future__ import annotations

import json
import logging

from docsbump.config import AppConfig
from docsbump.errors import ConfigurationError
from docsbump.github_gateway import GitHubGateway
from docsbump.models import UpgradeCheck
from docsbump.observability import log_event


LOGGER = logging.getLogger("docsbump.detector")


def shas_match(first: str, second: str) -> bool:
    """Abbreviated and full SHAs match when either is a prefix of the other."""
    return first.startswith(second) or second.startswith(first)


class UpgradeDetector:
    def __init__(
        self,
        config: AppConfig,
        *,
        target: GitHubGateway,
        source: GitHubGateway,
    ) -> None:
        self._config = config
        self._target = target
        self._source = source

    def check_needs_upgrade(self, branch: str) -> UpgradeCheck:
        current_sha = self.current_sha(branch)
        latest_sha = self.latest_sha(branch)
        needs_upgrade = not shas_match(current_sha, latest_sha)

        if needs_upgrade:
            affected_files = self._source.get_affected_files(current_sha, latest_sha)
            prefix = self._config.watched_prefix
            needs_upgrade = any(item.filename.startswith(prefix) for item in affected_files)

        log_event(
            LOGGER,
            "upgrade_check_completed",
            branch=branch,
            current_sha=current_sha,
            latest_sha=latest_sha,
            needs_upgrade=needs_upgrade,
        )
        return UpgradeCheck(
            current_sha=current_sha, latest_sha=latest_sha, needs_upgrade=needs_upgrade
        )

    def current_sha(self, branch: str) -> str:
        tracked = self._config.tracked
        source = f"{self._target.slug}/{tracked.path}#{branch}"
        log_event(LOGGER, "current_sha_lookup", source=source)

        raw = self._target.get_file_contents(tracked.path, branch)
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Unable to parse '{source}' as JSON: {exc}") from exc

        scripts = document.get("scripts") if isinstance(document, dict) else None
        script = scripts.get(tracked.script_name) if isinstance(scripts, dict) else None
        match = tracked.script_pattern.search(script) if isinstance(script, str) else None
        if match is None:
            raise ConfigurationError(
                f"Unable to extract the current SHA from '{source}'.\n"
                f"The '{tracked.script_name}' script is missing or has unexpected format."
            )
        return match.group(1)

    def latest_sha(self, branch: str) -> str:
        source = f"{self._source.slug}#{branch}"
        log_event(LOGGER, "latest_sha_lookup", source=source)

        sha = self._source.get_latest_sha(branch).strip()
        if not sha:
            raise ConfigurationError(
                f"Unable to extract the latest SHA from '{source}'.\nThe SHA is empty."
            )
        return sha[: self._config.automation.sha_length]
