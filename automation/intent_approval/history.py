"""Check the local clone has enough history to resolve a revert's parent commit."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from automation.intent_approval.errors import InsufficientHistoryError

logger = logging.getLogger("intent-approval")

GIT_TIMEOUT_SEC = 30


@dataclass(frozen=True)
class GitHistoryValidationResult:
    valid: bool
    is_shallow_clone: bool = False
    clone_depth: int | None = None
    error: str | None = None


def _git(args: list[str], cwd: str | Path | None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        timeout=GIT_TIMEOUT_SEC,
    )


def _commit_exists(ref: str, cwd: str | Path | None) -> bool:
    return _git(["cat-file", "-e", f"{ref}^{{commit}}"], cwd).returncode == 0


def validate_git_history(commit_sha: str | None = None, cwd: str | Path | None = None) -> GitHistoryValidationResult:
    try:
        shallow = _git(["rev-parse", "--is-shallow-repository"], cwd)
    except (OSError, subprocess.TimeoutExpired) as exc:
        return GitHistoryValidationResult(valid=False, error=f"Unable to run git: {exc}")
    if shallow.returncode != 0:
        detail = shallow.stderr.strip() or "not a git repository"
        return GitHistoryValidationResult(valid=False, error=f"Unable to inspect git history: {detail}")

    is_shallow = shallow.stdout.strip() == "true"
    depth: int | None = None
    if is_shallow:
        count = _git(["rev-list", "--count", "HEAD"], cwd)
        if count.returncode == 0 and count.stdout.strip().isdigit():
            depth = int(count.stdout.strip())

    if commit_sha:
        if not _commit_exists(commit_sha, cwd):
            return GitHistoryValidationResult(
                valid=False,
                is_shallow_clone=is_shallow,
                clone_depth=depth,
                error=f"Commit {commit_sha} is not available in the local clone",
            )
        if is_shallow and not _commit_exists(f"{commit_sha}^", cwd):
            return GitHistoryValidationResult(
                valid=False,
                is_shallow_clone=True,
                clone_depth=depth,
                error=f"Parent of commit {commit_sha} is outside the shallow clone (depth {depth})",
            )
        return GitHistoryValidationResult(valid=True, is_shallow_clone=is_shallow, clone_depth=depth)

    if is_shallow:
        return GitHistoryValidationResult(
            valid=False,
            is_shallow_clone=True,
            clone_depth=depth,
            error=f"Repository is a shallow clone (depth {depth}); revert needs full history",
        )
    return GitHistoryValidationResult(valid=True, is_shallow_clone=False)


def format_insufficient_history(result: GitHistoryValidationResult, commit_sha: str | None) -> str:
    lines = ["Insufficient Git History", "", result.error or "Git history validation failed."]
    if result.is_shallow_clone:
        lines.append(f"Current clone depth: {result.clone_depth if result.clone_depth is not None else 'unknown'}")
    if commit_sha:
        lines.append(f"Commit: {commit_sha}")
    lines += [
        "",
        "Reverting an approved change reads the parent of the applied commit.",
        "Check out the repository with full history, e.g.:",
        "  - uses: actions/checkout@v4",
        "    with:",
        "      fetch-depth: 0",
    ]
    return "\n".join(lines)


def validate_and_fail_on_insufficient_history(
    commit_sha: str | None = None, cwd: str | Path | None = None
) -> GitHistoryValidationResult:
    result = validate_git_history(commit_sha, cwd)
    if not result.valid:
        logger.error(format_insufficient_history(result, commit_sha))
        raise InsufficientHistoryError(result.error or "Insufficient git history", commit_sha)
    return result
