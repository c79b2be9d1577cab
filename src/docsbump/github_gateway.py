from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import json
import logging
from typing import cast
from urllib.parse import quote, urlencode

from docsbump.errors import RemoteOperationError
from docsbump.models import AffectedFile, PullRequest, PullRequestState
from docsbump.observability import log_event
from docsbump.shell import run


LOGGER = logging.getLogger("docsbump.github_gateway")
_PAGE_SIZE = 100


class GitHubApiError(RemoteOperationError):
    """GitHub answered with an error status or an unexpected payload."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}.git"

    def get_file_contents(self, path: str, ref: str) -> str:
        query = urlencode({"ref": ref})
        api_path = f"/repos/{self.owner}/{self.name}/contents/{quote(path)}?{query}"
        payload_obj = _require_object(self._api_json("GET", api_path), what="file contents")
        encoding = _as_string(payload_obj.get("encoding"))
        content = _as_string(payload_obj.get("content"))
        if encoding != "base64":
            raise GitHubApiError(f"Unexpected GitHub content encoding for {path}: {encoding!r}")
        try:
            text = base64.b64decode(content).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise GitHubApiError(f"Unable to decode contents of {path}@{ref}") from exc
        log_event(LOGGER, "github_read", endpoint="contents", path=path, ref=ref)
        return text

    def get_latest_sha(self, branch: str) -> str:
        api_path = f"/repos/{self.owner}/{self.name}/commits/{quote(branch, safe='')}"
        payload_obj = _require_object(self._api_json("GET", api_path), what="commit")
        sha = _as_string(payload_obj.get("sha")).strip()
        log_event(LOGGER, "github_read", endpoint="commit", branch=branch, sha=sha)
        return sha

    def get_affected_files(self, base: str, head: str) -> list[AffectedFile]:
        api_path = f"/repos/{self.owner}/{self.name}/compare/{base}...{head}"
        payload_obj = _require_object(self._api_json("GET", api_path), what="compare commits")
        files_payload = payload_obj.get("files", [])
        if not isinstance(files_payload, list):
            raise GitHubApiError("Unexpected GitHub response: expected files list")

        files: list[AffectedFile] = []
        for item in files_payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            filename = item_obj.get("filename")
            if isinstance(filename, str) and filename:
                files.append(AffectedFile(filename=filename))
        log_event(
            LOGGER,
            "github_read",
            endpoint="compare_commits",
            base=base,
            head=head,
            count=len(files),
        )
        return files

    def get_pull_requests(
        self,
        *,
        head: str | None = None,
        base: str | None = None,
        state: PullRequestState = "open",
    ) -> list[PullRequest]:
        if state not in {"open", "closed", "all"}:
            raise ValueError("state must be 'open', 'closed' or 'all'")
        pull_requests: list[PullRequest] = []
        page = 1
        while True:
            query_items: dict[str, object] = {"state": state, "per_page": _PAGE_SIZE, "page": page}
            if head is not None:
                query_items["head"] = head
            if base is not None:
                query_items["base"] = base
            api_path = f"/repos/{self.owner}/{self.name}/pulls?{urlencode(query_items)}"
            payload = self._api_json("GET", api_path)
            if not isinstance(payload, list):
                raise GitHubApiError("Unexpected GitHub response: expected list of pull requests")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                pull_requests.append(_parse_pull_request(item_obj))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_requests",
            head=head,
            state=state,
            count=len(pull_requests),
        )
        return pull_requests

    def create_pull_request(self, head: str, base: str, title: str, body: str = "") -> PullRequest:
        api_path = f"/repos/{self.owner}/{self.name}/pulls"
        try:
            payload = self._api_json(
                "POST",
                api_path,
                payload={"title": title, "head": head, "base": base, "body": body},
            )
            pull_request = _parse_pull_request(_require_object(payload, what="pull request"))
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_pr_create_failed",
                repo_full_name=self.slug,
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=self.slug,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
            base=base,
            head=head,
        )
        return pull_request

    def add_labels(self, pr_number: int, labels: tuple[str, ...]) -> None:
        if not labels:
            return
        api_path = f"/repos/{self.owner}/{self.name}/issues/{pr_number}/labels"
        self._api_json("POST", api_path, payload={"labels": list(labels)})
        log_event(LOGGER, "github_labels_added", pr_number=pr_number, labels=labels)

    def comment(self, issue_number: int, body: str) -> None:
        api_path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            self._api_json("POST", api_path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                repo_full_name=self.slug,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_issue_comment_posted", issue_number=issue_number)

    def create_issue(self, title: str, body: str) -> int:
        api_path = f"/repos/{self.owner}/{self.name}/issues"
        payload_obj = _require_object(
            self._api_json("POST", api_path, payload={"title": title, "body": body}),
            what="issue",
        )
        number = _as_int(payload_obj.get("number"), field="number")
        log_event(LOGGER, "github_issue_created", repo_full_name=self.slug, issue_number=number)
        return number

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            raw = run(["gh", "api", "--method", method_upper, "--include", path], check=False)
            try:
                status_code, _headers, body = _parse_http_response(raw)
                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise GitHubApiError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )
                return json.loads(body)
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_get_failed",
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    raw_preview=_preview_for_log(raw),
                )
                if isinstance(exc, GitHubApiError):
                    raise
                raise GitHubApiError(f"GitHub GET failed for path {path}: {exc}") from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        try:
            return json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise GitHubApiError(f"GitHub {method_upper} {path} returned invalid JSON") from exc


def _parse_pull_request(item_obj: dict[str, object]) -> PullRequest:
    head_obj = _as_object_dict(item_obj.get("head"))
    return PullRequest(
        number=_as_int(item_obj.get("number"), field="number"),
        html_url=_as_string(item_obj.get("html_url")),
        title=_as_string(item_obj.get("title")),
        state=_as_string(item_obj.get("state")).strip().lower(),
        head_ref=_as_string(head_obj.get("ref")) if head_obj else "",
    )


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _require_object(value: object, *, what: str) -> dict[str, object]:
    value_obj = _as_object_dict(value)
    if value_obj is None:
        raise GitHubApiError(f"Unexpected GitHub response: expected object for {what}")
    return value_obj


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
