from __future__ import annotations

import logging
import os
from pathlib import Path
import shutil

from docsbump.config import AppConfig
from docsbump.errors import ConfigurationError
from docsbump.git_ops import GitRepo
from docsbump.observability import log_event


LOGGER = logging.getLogger("docsbump.workspace")


def prepare_working_copy(config: AppConfig) -> GitRepo:
    """Create a fresh working copy with ``origin`` (fork) and ``upstream`` (target) remotes."""
    directory = config.workspace_dir
    log_event(
        LOGGER,
        "working_copy_init",
        fork=config.fork.full_name,
        directory=str(directory),
    )
    if directory.exists():
        shutil.rmtree(directory)
    directory.mkdir(parents=True)

    repo = GitRepo(directory)
    repo.init()
    repo.add_remote(GitRepo.ORIGIN, config.fork.url)
    repo.add_remote(GitRepo.UPSTREAM, config.target.url)

    if config.runtime.ci:
        _configure_for_ci(config, repo)
    return repo


def _configure_for_ci(config: AppConfig, repo: GitRepo) -> None:
    token = config.runtime.github_token
    if not token:
        raise ConfigurationError("GH_TOKEN must be set when running in CI")
    credentials_path = config.automation.credentials_path
    log_event(LOGGER, "working_copy_ci_configured", credentials_path=str(credentials_path))

    write_credentials(credentials_path, token)
    repo.config("credential.helper", f"store --file={credentials_path}")
    if config.identity is not None:
        repo.config("user.name", config.identity.user_name)
        repo.config("user.email", config.identity.user_email)


def write_credentials(path: Path, token: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(f"https://{token}:@github.com\n")
    # O_CREAT's mode only applies to new files.
    os.chmod(path, 0o600)


def remove_credentials(path: Path) -> None:
    path.unlink(missing_ok=True)


def replace_in_file(path: Path, old: str, new: str) -> int:
    """Replace every literal occurrence of ``old`` with ``new``; returns the count."""
    text = path.read_text(encoding="utf-8")
    count = text.count(old)
    if count:
        path.write_text(text.replace(old, new), encoding="utf-8")
    log_event(LOGGER, "file_patched", path=str(path), old=old, new=new, replacements=count)
    return count
