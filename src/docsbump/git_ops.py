from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
import logging
import shutil

from docsbump.errors import ClosedResourceError
from docsbump.observability import log_event
from docsbump.shell import run


LOGGER = logging.getLogger("docsbump.git_ops")

OptionValue = bool | str | Sequence[str]


@dataclass(frozen=True)
class GitOptions:
    """Command-line options for one git invocation.

    ``flags`` render as bare switches, ``values`` as ``name value`` pairs and
    ``repeated`` as one ``name value`` pair per entry. Single-character names
    render as short options (``-b``), longer names as long options (``--depth``).
    """

    flags: tuple[str, ...] = ()
    values: tuple[tuple[str, str], ...] = ()
    repeated: tuple[tuple[str, tuple[str, ...]], ...] = ()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, OptionValue]) -> GitOptions:
        flags: list[str] = []
        values: list[tuple[str, str]] = []
        repeated: list[tuple[str, tuple[str, ...]]] = []
        for key, value in mapping.items():
            if isinstance(value, bool):
                if value:
                    flags.append(key)
            elif isinstance(value, str):
                values.append((key, value))
            else:
                repeated.append((key, tuple(value)))
        return cls(flags=tuple(flags), values=tuple(values), repeated=tuple(repeated))

    def merged(self, other: GitOptions | None) -> GitOptions:
        if other is None:
            return self
        return GitOptions(
            flags=self.flags + other.flags,
            values=self.values + other.values,
            repeated=self.repeated + other.repeated,
        )


def render_options(options: GitOptions | None) -> list[str]:
    if options is None:
        return []
    rendered: list[str] = []
    for key in options.flags:
        rendered.append(_option_name(key))
    for key, value in options.values:
        rendered.extend([_option_name(key), value])
    for key, items in options.repeated:
        name = _option_name(key)
        for item in items:
            rendered.extend([name, item])
    return rendered


def _option_name(key: str) -> str:
    if not key:
        raise ValueError("Option names must be non-empty")
    return f"-{key}" if len(key) == 1 else f"--{key}"


class GitRepo:
    """A single working copy; every operation runs inside ``directory``."""

    ORIGIN = "origin"
    UPSTREAM = "upstream"

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._destroyed = False

    @property
    def name(self) -> str:
        return self.directory.name

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def current_branch(self) -> str:
        return self._git(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def init(self, options: GitOptions | None = None) -> None:
        log_event(LOGGER, "git_init", directory=str(self.directory))
        self._git(["init"], options)

    def add_remote(self, name: str, url: str) -> None:
        log_event(LOGGER, "git_remote_added", remote=name, url=url)
        self._git(["remote", "remove", name], check=False)
        self._git(["remote", "add", name, url])

    def config(self, key: str, value: str) -> None:
        self._git(["config", key, value])

    def fetch(
        self,
        remote: str,
        branch: str | None = None,
        options: GitOptions | None = None,
    ) -> None:
        log_event(LOGGER, "git_fetch", remote=remote, branch=branch)
        args = ["fetch", remote]
        if branch:
            args.append(branch)
        self._git(args, options)

    def checkout(self, ref: str, options: GitOptions | None = None) -> None:
        log_event(LOGGER, "git_checkout", ref=ref)
        self._git(["checkout", ref], options)

    def commit(self, message: str, options: GitOptions | None = None) -> None:
        log_event(LOGGER, "git_commit", subject=message.splitlines()[0] if message else "")
        self._git(["commit"], GitOptions(values=(("message", message),)).merged(options))

    def push(
        self,
        remote: str,
        local_branch: str | None = None,
        remote_branch: str | None = None,
        options: GitOptions | None = None,
    ) -> None:
        """Push ``local_branch`` to ``remote_branch`` on ``remote``.

        ``local_branch`` defaults to the current branch and ``remote_branch``
        to ``local_branch``. An empty ``local_branch`` deletes the remote branch.
        """
        if local_branch is None:
            local_branch = self.current_branch
        if remote_branch is None:
            remote_branch = local_branch
        log_event(
            LOGGER,
            "git_push",
            remote=remote,
            local_branch=local_branch,
            remote_branch=remote_branch,
        )
        try:
            self._git(["push", remote, f"{local_branch}:{remote_branch}"], options)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "git_push_failed",
                remote=remote,
                remote_branch=remote_branch,
                error_type=type(exc).__name__,
            )
            raise

    def delete_remote_branch(self, remote: str, branch: str) -> None:
        log_event(LOGGER, "git_remote_branch_deleted", remote=remote, branch=branch)
        self.push(remote, local_branch="", remote_branch=branch)

    def get_remote_branches(self, remote: str) -> list[str]:
        self.fetch(remote, options=GitOptions(flags=("no-tags",), values=(("depth", "1"),)))
        output = self._git(["branch"], GitOptions(flags=("remotes",)))
        prefix = f"{remote}/"
        branches: list[str] = []
        for raw_line in output.splitlines():
            line = raw_line.strip()
            if not line.startswith(prefix) or " -> " in line:
                continue
            branches.append(line[len(prefix) :])
        log_event(LOGGER, "git_remote_branches_listed", remote=remote, count=len(branches))
        return branches

    def destroy(self) -> None:
        if self._destroyed:
            return
        log_event(LOGGER, "git_working_copy_destroyed", directory=str(self.directory))
        shutil.rmtree(self.directory, ignore_errors=True)
        self._destroyed = True

    def _git(
        self,
        args: list[str],
        options: GitOptions | None = None,
        *,
        check: bool = True,
    ) -> str:
        if self._destroyed:
            raise ClosedResourceError(f"Working copy {self.directory} was already destroyed")
        return run(["git", *args, *render_options(options)], cwd=self.directory, check=check)
