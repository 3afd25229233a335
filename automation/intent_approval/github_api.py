"""Thin GitHub REST wrapper used by the approval protocol.

Only the calls the protocol needs: comments, file contents, commits and the
git data endpoints for symlink commits. Every failure is raised as
GitHubApiError carrying the HTTP status so callers can tell 404 apart.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any
from urllib import error, parse, request

from automation.intent_approval.errors import GitHubApiError

logger = logging.getLogger("intent-approval")

API_VERSION = "2022-11-28"
REQUEST_TIMEOUT_SEC = 20


def _encode_content(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def _decode_content(data: dict[str, Any]) -> str:
    raw = data.get("content") or ""
    if data.get("encoding", "base64") != "base64":
        return raw
    return base64.b64decode(raw).decode("utf-8")


class GitHubClient:
    def __init__(self, repo: str, token: str, api_url: str = "https://api.github.com") -> None:
        if "/" not in repo:
            raise ValueError(f"repository must be owner/name, got {repo!r}")
        self.repo = repo
        self.token = token
        self.api_url = api_url.rstrip("/")

    def _api(self, path: str, method: str = "GET", payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.api_url}/repos/{self.repo}{path}"
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
        req = request.Request(url, data=data, method=method)
        req.add_header("Accept", "application/vnd.github+json")
        req.add_header("Authorization", f"Bearer {self.token}")
        req.add_header("X-GitHub-Api-Version", API_VERSION)
        if data is not None:
            req.add_header("Content-Type", "application/json")
        try:
            with request.urlopen(req, timeout=REQUEST_TIMEOUT_SEC) as resp:
                raw = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            message = body
            try:
                message = json.loads(body).get("message", body)
            except (json.JSONDecodeError, AttributeError):
                pass
            raise GitHubApiError(exc.code, f"{method} {path} failed status={exc.code}: {message}", path) from exc
        except error.URLError as exc:
            raise GitHubApiError(0, f"{method} {path} failed: {exc.reason}", path) from exc
        if not raw.strip():
            return {}
        return json.loads(raw)

    @staticmethod
    def _contents_path(path: str) -> str:
        return "/contents/" + parse.quote(path.lstrip("/"), safe="/")

    def get_pull_request(self, number: int) -> dict[str, Any]:
        return self._api(f"/pulls/{number}")

    def get_comment(self, comment_id: int) -> dict[str, Any]:
        return self._api(f"/issues/comments/{comment_id}")

    def update_comment(self, comment_id: int, body: str) -> dict[str, Any]:
        logger.info("updating comment=%s", comment_id)
        return self._api(f"/issues/comments/{comment_id}", method="PATCH", payload={"body": body})

    def list_issue_comments(self, issue_number: int) -> list[dict[str, Any]]:
        return self._api(f"/issues/{issue_number}/comments?per_page=100")

    def get_file_content(self, path: str, ref: str) -> dict[str, Any]:
        """Return {"sha", "type", "content"} for ``path`` at ``ref``.

        Directories come back with type "dir" and no content. Symlinks carry
        their link target as content.
        """
        data = self._api(f"{self._contents_path(path)}?ref={parse.quote(ref, safe='')}")
        if isinstance(data, list):
            return {"sha": "", "type": "dir", "path": path, "content": None}
        kind = data.get("type", "file")
        if kind == "symlink":
            content = data.get("target", "")
        else:
            content = _decode_content(data)
        return {"sha": data.get("sha", ""), "type": kind, "path": path, "content": content}

    def create_or_update_file(
        self,
        path: str,
        content: str,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": message,
            "content": _encode_content(content),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        return self._api(self._contents_path(path), method="PUT", payload=payload)

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> dict[str, Any]:
        payload = {"message": message, "branch": branch, "sha": sha}
        return self._api(self._contents_path(path), method="DELETE", payload=payload)

    def get_commit(self, sha: str) -> dict[str, Any]:
        return self._api(f"/commits/{sha}")

    def create_files_with_symlinks(self, files: list[dict[str, Any]], message: str, branch: str) -> dict[str, Any]:
        """Write several files in one commit via the git data API.

        Each entry is {"path", "content", "is_symlink"}; symlink content is
        the link target.
        """
        ref = self._api(f"/git/ref/heads/{parse.quote(branch, safe='/')}")
        base_sha = ref["object"]["sha"]
        base_commit = self._api(f"/git/commits/{base_sha}")
        tree = self._api(
            "/git/trees",
            method="POST",
            payload={
                "base_tree": base_commit["tree"]["sha"],
                "tree": [
                    {
                        "path": f["path"],
                        "mode": "120000" if f.get("is_symlink") else "100644",
                        "type": "blob",
                        "content": f["content"],
                    }
                    for f in files
                ],
            },
        )
        commit = self._api(
            "/git/commits",
            method="POST",
            payload={"message": message, "tree": tree["sha"], "parents": [base_sha]},
        )
        self._api(
            f"/git/refs/heads/{parse.quote(branch, safe='/')}",
            method="PATCH",
            payload={"sha": commit["sha"]},
        )
        return {"commit": {"sha": commit["sha"], "html_url": commit.get("html_url", "")}}
