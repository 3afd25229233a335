from __future__ import annotations

import hashlib
from typing import Any

import pytest

from automation.intent_approval import markers
from automation.intent_approval.errors import GitHubApiError
from automation.intent_approval.reconstruct import ReconstructedUpdate


def blob_sha(content: str) -> str:
    return "blob-" + hashlib.sha1(content.encode("utf-8")).hexdigest()[:12]


class FakeGitHubClient:
    """In-memory stand-in for the GitHub collaborator.

    Keeps a linear commit history for one branch so parent lookups behave
    like the real contents/commits endpoints.
    """

    def __init__(self, files: dict[str, str] | None = None, branch: str = "feature/docs", head_sha: str = "abc123"):
        self.branch = branch
        self.head_sha = head_sha
        self.commits: dict[str, dict[str, Any]] = {"base": {"parents": [], "files": dict(files or {}), "message": ""}}
        self.branch_head = "base"
        self.symlinks: set[str] = set()
        self.comments: dict[int, str] = {}
        self.comment_reads: dict[int, list[str]] = {}
        self.comment_updates: list[tuple[int, str]] = []
        self.created_commits: list[dict[str, Any]] = []
        self.fail: dict[str, Exception] = {}
        self._seq = 0

    # helpers

    def _check(self, name: str) -> None:
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def _files(self, ref: str) -> dict[str, str]:
        if ref == self.branch:
            ref = self.branch_head
        if ref not in self.commits:
            raise GitHubApiError(404, "No commit found for the ref", ref)
        return self.commits[ref]["files"]

    def _commit(self, files: dict[str, str], message: str) -> dict[str, Any]:
        self._seq += 1
        sha = f"commit{self._seq}"
        self.commits[sha] = {"parents": [{"sha": self.branch_head}], "files": files, "message": message}
        self.branch_head = sha
        self.created_commits.append({"sha": sha, "message": message})
        return {"commit": {"sha": sha, "html_url": f"https://github.com/acme/widgets/commit/{sha}"}}

    @property
    def files(self) -> dict[str, str]:
        return self._files(self.branch)

    # collaborator interface

    def get_comment(self, comment_id: int) -> dict[str, Any]:
        self._check("get_comment")
        scripted = self.comment_reads.get(comment_id)
        body = scripted.pop(0) if scripted else self.comments.get(comment_id)
        return {"id": comment_id, "body": body}

    def update_comment(self, comment_id: int, body: str) -> dict[str, Any]:
        self._check("update_comment")
        self.comments[comment_id] = body
        self.comment_updates.append((comment_id, body))
        return {"id": comment_id, "body": body}

    def get_pull_request(self, number: int) -> dict[str, Any]:
        self._check("get_pull_request")
        return {"number": number, "head": {"sha": self.head_sha, "ref": self.branch}}

    def get_file_content(self, path: str, ref: str) -> dict[str, Any]:
        self._check("get_file_content")
        files = self._files(ref)
        if path not in files:
            raise GitHubApiError(404, "Not Found", path)
        kind = "symlink" if ref == self.branch and path in self.symlinks else "file"
        return {"sha": blob_sha(files[path]), "type": kind, "path": path, "content": files[path]}

    def create_or_update_file(self, path: str, content: str, message: str, branch: str, sha: str | None = None):
        self._check("create_or_update_file")
        files = dict(self._files(branch))
        if path in files and sha != blob_sha(files[path]):
            raise GitHubApiError(409, f"{path} does not match {sha}", path)
        files[path] = content
        return self._commit(files, message)

    def delete_file(self, path: str, message: str, branch: str, sha: str):
        self._check("delete_file")
        files = dict(self._files(branch))
        if path not in files:
            raise GitHubApiError(404, "Not Found", path)
        del files[path]
        self.symlinks.discard(path)
        return self._commit(files, message)

    def get_commit(self, sha: str) -> dict[str, Any]:
        self._check("get_commit")
        if sha not in self.commits:
            raise GitHubApiError(404, "No commit found for SHA", sha)
        return {"sha": sha, "parents": list(self.commits[sha]["parents"])}

    def create_files_with_symlinks(self, files: list[dict[str, Any]], message: str, branch: str):
        self._check("create_files_with_symlinks")
        current = dict(self._files(branch))
        for entry in files:
            current[entry["path"]] = entry["content"]
            if entry.get("is_symlink"):
                self.symlinks.add(entry["path"])
        return self._commit(current, message)


@pytest.fixture
def gh() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def fake_client_factory():
    return FakeGitHubClient


@pytest.fixture
def make_body():
    def _make(
        node: str = "packages/api/AGENTS.md",
        head: str = "abc123",
        applied: str = "",
        checked: bool = False,
        other: str | None = None,
        suggested: str = "# API Package\n\nHow the API package is organised.\n",
        current: str | None = None,
        reason: str = "New package needs documentation",
    ) -> str:
        update = ReconstructedUpdate(
            node_path=node,
            other_node_path=other,
            action="update" if current else "create",
            suggested_content=suggested,
            current_content=current,
            reason=reason,
        )
        body = markers.render_comment(update, head)
        if applied:
            body = markers.set_applied_commit(body, applied)
        return markers.set_checkbox_state(body, checked)

    return _make
