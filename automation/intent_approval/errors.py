"""Error taxonomy for the intent approval protocol and the outermost run boundary."""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger("intent-approval")


class IntentApprovalError(Exception):
    # Set on errors whose failure has already been logged where they were raised.
    already_reported = False


class GitHubApiError(IntentApprovalError):
    def __init__(self, status: int, message: str, path: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.path = path

    @property
    def not_found(self) -> bool:
        return self.status == 404


class ConfigError(IntentApprovalError):
    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


class InsufficientHistoryError(IntentApprovalError):
    already_reported = True

    def __init__(self, message: str, commit_sha: str | None = None) -> None:
        super().__init__(message)
        self.commit_sha = commit_sha


class SymlinkConflictError(IntentApprovalError):
    already_reported = True

    def __init__(self, message: str, conflict_paths: list[str] | None = None) -> None:
        super().__init__(message)
        self.conflict_paths = conflict_paths or []


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, GitHubApiError) and exc.not_found


def is_already_reported(exc: BaseException) -> bool:
    return bool(getattr(exc, "already_reported", False))


def format_config_error(exc: ConfigError) -> str:
    lines = ["Configuration Validation Error", "", str(exc)]
    if exc.problems:
        lines.append("")
        lines.extend(f"  - {p}" for p in exc.problems)
    lines.append("")
    lines.append("Check INTENT_APPROVAL_CONFIG and the INTENT_* environment variables.")
    return "\n".join(lines)


def run(fn: Callable[[], Any], action_name: str = "Intent Approval") -> int:
    """Run ``fn`` and map any failure to an exit code.

    Errors flagged ``already_reported`` were logged where they were raised, so
    they only get a debug line here.
    """
    try:
        fn()
    except Exception as exc:
        if is_already_reported(exc):
            logger.debug("error already reported type=%s", type(exc).__name__)
            return 1
        if isinstance(exc, ConfigError):
            logger.error(format_config_error(exc))
            return 1
        logger.error("%s Failed\n\n%s", action_name, exc or "An unexpected error occurred.")
        logger.debug("traceback", exc_info=True)
        return 1
    return 0
