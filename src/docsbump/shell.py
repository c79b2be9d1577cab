from __future__ import annotations

from pathlib import Path
import logging
import subprocess

from docsbump.errors import RemoteOperationError


class CommandError(RemoteOperationError):
    def __init__(self, message: str, *, argv: list[str], exit_code: int, stderr: str) -> None:
        super().__init__(message)
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.stderr = stderr


LOGGER = logging.getLogger("docsbump.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    check: bool = True,
) -> str:
    command = " ".join(argv)
    LOGGER.debug("event=command_started command=%s cwd=%s", command, cwd)
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        input=input_text,
        text=True,
        capture_output=True,
        check=False,
    )
    for line in proc.stdout.splitlines():
        if line.strip():
            LOGGER.debug("event=command_output command=%s line=%s", argv[0], line)
    if check and proc.returncode != 0:
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            command,
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {command}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n"
            f"stderr:\n{proc.stderr}",
            argv=argv,
            exit_code=proc.returncode,
            stderr=proc.stderr,
        )
    return proc.stdout
