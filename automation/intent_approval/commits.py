"""File-level commits that add, update or revert intent layer files.

Commit messages follow ``[INTENT:<TAG>] <path> - <reason>``:

- ``[INTENT:ADD]`` the file did not exist on the branch
- ``[INTENT:UPDATE]`` the file existed and was overwritten
- ``[INTENT:REVERT]`` the file was restored to (or deleted back to) its state
  before the applied commit
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Any

from automation.intent_approval.errors import GitHubApiError, SymlinkConflictError, is_not_found
from automation.intent_approval.reconstruct import ReconstructedUpdate

logger = logging.getLogger("intent-approval")

ADD_TAG = "[INTENT:ADD]"
UPDATE_TAG = "[INTENT:UPDATE]"
REVERT_TAG = "[INTENT:REVERT]"

DEFAULT_REVERT_REASON = "Reverted via checkbox"
MAX_REASON_LEN = 100

AGENTS_FILE = "AGENTS.md"

_INTENT_MESSAGE_RE = re.compile(r"^\[INTENT:(ADD|UPDATE|REVERT)\]\s+(\S+)\s+-\s+(.+)$")


@dataclass(frozen=True)
class CommitResult:
    sha: str
    url: str
    file_path: str
    message: str


def _truncate(reason: str) -> str:
    if len(reason) > MAX_REASON_LEN:
        return reason[: MAX_REASON_LEN - 3] + "..."
    return reason


def commit_message(tag: str, path: str, reason: str) -> str:
    return f"{tag} {path} - {_truncate(reason)}"


def parse_intent_commit_message(message: str) -> dict[str, str] | None:
    match = _INTENT_MESSAGE_RE.match(message)
    if not match:
        return None
    return {"type": match.group(1), "node_path": match.group(2), "reason": match.group(3)}


def is_intent_commit(message: str) -> bool:
    return bool(re.match(r"^\[INTENT:(ADD|UPDATE|REVERT)\]", message))


def get_file(client: Any, path: str, ref: str) -> dict[str, Any] | None:
    """Fetch ``path`` at ``ref``; None when it does not exist there.

    Anything other than a 404 is re-raised.
    """
    try:
        data = client.get_file_content(path, ref)
    except GitHubApiError as exc:
        if is_not_found(exc):
            return None
        raise
    if data.get("type") == "dir":
        return None
    return data


def _to_result(response: dict[str, Any], path: str, message: str) -> CommitResult:
    commit = response.get("commit") or {}
    return CommitResult(
        sha=commit.get("sha") or "",
        url=commit.get("html_url") or "",
        file_path=path,
        message=message,
    )


def symlink_pair(node_path: str, other_node_path: str, symlink_source: str) -> tuple[str, str]:
    """Return (source, link) for a paired AGENTS.md/CLAUDE.md."""
    node_is_agents = posixpath.basename(node_path) == AGENTS_FILE
    agents, claude = (node_path, other_node_path) if node_is_agents else (other_node_path, node_path)
    if symlink_source == "claude":
        return claude, agents
    return agents, claude


def _sync_companion(client: Any, update: ReconstructedUpdate, branch: str) -> CommitResult | None:
    other = update.other_node_path
    if not other:
        return None
    existing = get_file(client, other, branch)
    if existing is not None and existing.get("content") == update.suggested_content:
        logger.info("companion already in sync path=%s", other)
        return None
    tag = UPDATE_TAG if existing is not None else ADD_TAG
    message = f"{tag} {other} - Sync with {update.node_path}"
    response = client.create_or_update_file(
        other,
        update.suggested_content,
        message,
        branch,
        existing["sha"] if existing else None,
    )
    return _to_result(response, other, message)


def create_intent_add_commit(
    client: Any,
    update: ReconstructedUpdate,
    branch: str,
    *,
    symlink: bool = False,
    symlink_source: str = "agents",
) -> list[CommitResult]:
    """Create ``update.node_path`` (and its companion); primary result first."""
    if not update.suggested_content:
        raise ValueError("create_intent_add_commit requires suggested_content")
    message = commit_message(ADD_TAG, update.node_path, update.reason)

    if update.other_node_path and symlink:
        if get_file(client, update.other_node_path, branch) is None:
            source, link = symlink_pair(update.node_path, update.other_node_path, symlink_source)
            response = client.create_files_with_symlinks(
                [
                    {"path": source, "content": update.suggested_content, "is_symlink": False},
                    {"path": link, "content": posixpath.basename(source), "is_symlink": True},
                ],
                message,
                branch,
            )
            return [_to_result(response, update.node_path, message)]

    response = client.create_or_update_file(update.node_path, update.suggested_content, message, branch, None)
    results = [_to_result(response, update.node_path, message)]
    if update.other_node_path and not symlink:
        companion = _sync_companion(client, update, branch)
        if companion:
            results.append(companion)
    return results


def create_intent_update_commit(
    client: Any,
    update: ReconstructedUpdate,
    branch: str,
    existing_sha: str,
    *,
    symlink: bool = False,
    symlink_source: str = "agents",
) -> list[CommitResult]:
    """Overwrite ``update.node_path`` (and its companion); primary result first.

    In symlink mode only the source file of the pair is written, the link
    follows it.
    """
    if not update.suggested_content:
        raise ValueError("create_intent_update_commit requires suggested_content")
    message = commit_message(UPDATE_TAG, update.node_path, update.reason)

    if update.other_node_path and symlink:
        other = get_file(client, update.other_node_path, branch)
        node = get_file(client, update.node_path, branch)
        if other is not None and node is not None and other.get("type") == "file" and node.get("type") == "file":
            paths = [update.node_path, update.other_node_path]
            logger.error(
                "symlink conflict: both %s and %s are regular files; "
                "replace one with a symlink or disable INTENT_SYMLINK",
                *paths,
            )
            raise SymlinkConflictError("Symlink configuration conflict detected", paths)
        source, _link = symlink_pair(update.node_path, update.other_node_path, symlink_source)
        if source == update.other_node_path and other is not None:
            response = client.create_or_update_file(source, update.suggested_content, message, branch, other["sha"])
            return [_to_result(response, update.node_path, message)]
        response = client.create_or_update_file(
            update.node_path, update.suggested_content, message, branch, existing_sha
        )
        return [_to_result(response, update.node_path, message)]

    response = client.create_or_update_file(update.node_path, update.suggested_content, message, branch, existing_sha)
    results = [_to_result(response, update.node_path, message)]
    if update.other_node_path and not symlink:
        companion = _sync_companion(client, update, branch)
        if companion:
            results.append(companion)
    return results


def resolve_parent_sha(client: Any, applied_commit: str) -> str:
    commit = client.get_commit(applied_commit)
    parents = commit.get("parents") or []
    if not parents:
        raise ValueError(f"Cannot revert: commit {applied_commit} has no parent (is it the initial commit?)")
    return parents[0]["sha"]


def revert_path(client: Any, path: str, parent_sha: str, branch: str, message: str) -> CommitResult | None:
    """Put ``path`` on ``branch`` back to its state at ``parent_sha``.

    Returns None when the branch already matches that state.
    """
    previous = get_file(client, path, parent_sha)
    current = get_file(client, path, branch)

    if previous is None:
        if current is None:
            logger.info("revert no-op, already absent path=%s", path)
            return None
        response = client.delete_file(path, message, branch, current["sha"])
        logger.info("revert deleted path=%s", path)
        return _to_result(response, path, message)

    restored = previous.get("content") or ""
    if current is not None and current.get("content") == restored:
        logger.info("revert no-op, already restored path=%s", path)
        return None
    response = client.create_or_update_file(path, restored, message, branch, current["sha"] if current else None)
    logger.info("revert restored path=%s parent=%s", path, parent_sha)
    return _to_result(response, path, message)


def create_intent_revert_commit(
    client: Any,
    applied_commit: str,
    node_path: str,
    branch: str,
    other_node_path: str | None = None,
    reason: str = DEFAULT_REVERT_REASON,
) -> list[CommitResult]:
    """Revert every path touched by ``applied_commit``; each path independently.

    The companion's pre-existence is checked on its own, it may have been
    created by the applied commit while the primary file was only updated.
    """
    parent_sha = resolve_parent_sha(client, applied_commit)
    results: list[CommitResult] = []

    primary = revert_path(client, node_path, parent_sha, branch, commit_message(REVERT_TAG, node_path, reason))
    if primary:
        results.append(primary)

    if other_node_path:
        message = f"{REVERT_TAG} {other_node_path} - Sync with {node_path}"
        companion = revert_path(client, other_node_path, parent_sha, branch, message)
        if companion:
            results.append(companion)
    return results
