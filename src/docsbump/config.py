from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
import os
import re
import tempfile
import tomllib
from typing import cast

from docsbump.errors import ConfigurationError


_DEFAULT_SCRIPT_PATTERN = r"^node \S+ ([\da-f]+)$"


@dataclass(frozen=True)
class RepoRef:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}.git"


@dataclass(frozen=True)
class TrackedFileConfig:
    path: str
    script_name: str
    script_pattern: re.Pattern[str]


@dataclass(frozen=True)
class AutomationConfig:
    branch_prefix: str
    commit_message_prefix: str
    labels: tuple[str, ...]
    workspace_root: Path
    sha_length: int = 9

    @property
    def credentials_path(self) -> Path:
        return Path(tempfile.gettempdir()) / f".git-credentials--{self.branch_prefix}"


@dataclass(frozen=True)
class IdentityConfig:
    user_name: str
    user_email: str


@dataclass(frozen=True)
class RuntimeConfig:
    ci: bool = False
    github_token: str | None = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> RuntimeConfig:
        token = environ.get("GH_TOKEN", "").strip()
        return cls(ci=bool(environ.get("CI", "").strip()), github_token=token or None)


@dataclass(frozen=True)
class AppConfig:
    target: RepoRef
    default_branch: str
    fork: RepoRef
    source: RepoRef
    watched_prefix: str
    tracked: TrackedFileConfig
    automation: AutomationConfig
    report: RepoRef | None = None
    identity: IdentityConfig | None = None
    runtime: RuntimeConfig = RuntimeConfig()

    @property
    def workspace_dir(self) -> Path:
        return self.automation.workspace_root / self.fork.name


def load_config(path: Path, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Config file {path} is not valid TOML: {exc}") from exc

    target_data = _require_table(data, "target")
    fork_data = _require_table(data, "fork")
    source_data = _require_table(data, "source")
    tracked_data = _require_table(data, "tracked")
    automation_data = _require_table(data, "automation")
    report_data = _optional_table(data, "report")
    identity_data = _optional_table(data, "identity")

    target = RepoRef(owner=_require_str(target_data, "owner"), name=_require_str(target_data, "name"))
    fork = RepoRef(
        owner=_require_str(fork_data, "owner"),
        name=_str_with_default(fork_data, "name", target.name),
    )
    source = RepoRef(owner=_require_str(source_data, "owner"), name=_require_str(source_data, "name"))

    automation = AutomationConfig(
        branch_prefix=_require_branch_prefix(automation_data, "branch_prefix"),
        commit_message_prefix=_require_str(automation_data, "commit_message_prefix"),
        labels=_tuple_of_str(automation_data, "labels"),
        workspace_root=_path_with_default(
            automation_data, "workspace_root", Path(tempfile.gettempdir())
        ),
        sha_length=_int_with_default(automation_data, "sha_length", 9),
    )
    if automation.sha_length < 7:
        raise ConfigurationError("automation.sha_length must be >= 7")

    report: RepoRef | None = None
    if report_data is not None:
        report = RepoRef(
            owner=_require_str(report_data, "owner"), name=_require_str(report_data, "name")
        )

    identity: IdentityConfig | None = None
    if identity_data is not None:
        identity = IdentityConfig(
            user_name=_require_str(identity_data, "user_name"),
            user_email=_require_str(identity_data, "user_email"),
        )

    return AppConfig(
        target=target,
        default_branch=_str_with_default(target_data, "default_branch", "main"),
        fork=fork,
        source=source,
        watched_prefix=_require_str(source_data, "watched_prefix"),
        tracked=TrackedFileConfig(
            path=_require_str(tracked_data, "path"),
            script_name=_require_str(tracked_data, "script_name"),
            script_pattern=_pattern_with_default(
                tracked_data, "script_pattern", _DEFAULT_SCRIPT_PATTERN
            ),
        ),
        automation=automation,
        report=report,
        identity=identity,
        runtime=RuntimeConfig.from_environ(os.environ if environ is None else environ),
    )


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigurationError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigurationError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key} is required and must be a non-empty string")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigurationError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ConfigurationError(f"{key} must be a list of non-empty strings")
        if item not in out:
            out.append(item)
    return tuple(out)


def _path_with_default(data: dict[str, object], key: str, default: Path) -> Path:
    if key not in data:
        return default
    return Path(_require_str(data, key)).expanduser()


def _pattern_with_default(data: dict[str, object], key: str, default: str) -> re.Pattern[str]:
    raw = _str_with_default(data, key, default)
    try:
        pattern = re.compile(raw)
    except re.error as exc:
        raise ConfigurationError(f"{key} is not a valid regular expression: {exc}") from exc
    if pattern.groups < 1:
        raise ConfigurationError(f"{key} must contain a capture group for the SHA")
    return pattern


def _require_branch_prefix(data: dict[str, object], key: str) -> str:
    value = _require_str(data, key)
    if "--" in value or any(ch.isspace() for ch in value):
        raise ConfigurationError(f"{key} must not contain whitespace or '--'")
    return value
