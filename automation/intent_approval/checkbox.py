"""Apply or revert an approved intent layer change when its checkbox toggles.

State table (checkbox x appliedCommit in the marker):

    checked   + not applied  -> APPLY
    checked   + applied      -> no-op, already applied
    unchecked + not applied  -> no-op, skipped
    unchecked + applied      -> REVERT

The marker's appliedCommit is the only idempotency signal. Nothing here takes
a lock: a duplicate or late delivery reads the rewritten marker and lands on
one of the no-op rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from automation.intent_approval import markers
from automation.intent_approval.commits import (
    CommitResult,
    create_intent_add_commit,
    create_intent_revert_commit,
    create_intent_update_commit,
    get_file,
)
from automation.intent_approval.config import Settings
from automation.intent_approval.debounce import DebounceResult, debounce_checkbox_toggle
from automation.intent_approval.errors import GitHubApiError, is_already_reported
from automation.intent_approval.history import validate_and_fail_on_insufficient_history
from automation.intent_approval.markers import IntentMarker
from automation.intent_approval.reconstruct import reconstruct_update

logger = logging.getLogger("intent-approval")


@dataclass
class CheckboxResult:
    success: bool
    skipped: bool = False
    commit_result: CommitResult | None = None
    companion_results: list[CommitResult] = field(default_factory=list)
    marked_as_resolved: bool = False
    error: str = ""
    reason: str = ""


@dataclass(frozen=True)
class CheckboxEvent:
    comment_id: int
    comment_body: str
    issue_number: int
    is_pull_request: bool


def validate_checkbox_event(payload: dict[str, Any]) -> CheckboxEvent | None:
    comment = payload.get("comment")
    if not isinstance(comment, dict):
        return None
    comment_id = comment.get("id")
    comment_body = comment.get("body")
    if not comment_id or not comment_body:
        return None

    issue = payload.get("issue")
    if not isinstance(issue, dict) or not issue.get("number"):
        return None

    return CheckboxEvent(
        comment_id=int(comment_id),
        comment_body=comment_body,
        issue_number=int(issue["number"]),
        is_pull_request="pull_request" in issue,
    )


def _split_results(results: list[CommitResult], node_path: str) -> tuple[CommitResult | None, list[CommitResult]]:
    primary = next((r for r in results if r.file_path == node_path), None)
    return primary, [r for r in results if r is not primary]


def _unrecorded(
    comment_id: int,
    primary: CommitResult | None,
    companions: list[CommitResult],
    exc: Exception,
) -> CheckboxResult:
    """The branch changed but the marker could not be rewritten to say so."""
    shas = [r.sha for r in ([primary] if primary else []) + companions]
    created = ", ".join(shas) or "no commit"
    error = f"Commit {created} was created but not recorded in the comment: {exc}"
    logger.error("comment update failed comment=%s commits=%s err=%s", comment_id, created, exc)
    return CheckboxResult(success=False, commit_result=primary, companion_results=companions, error=error)


def handle_checked_checkbox(
    client: Any,
    comment_id: int,
    comment_body: str,
    marker: IntentMarker,
    current_head_sha: str,
    *,
    branch: str,
    symlink: bool = False,
    symlink_source: str = "agents",
) -> CheckboxResult:
    if marker.is_applied:
        logger.info("already applied comment=%s sha=%s", comment_id, marker.applied_commit)
        return CheckboxResult(success=True, skipped=True, reason=f"Change already applied in {marker.applied_commit}")

    if marker.head_sha != current_head_sha:
        stale = f"PR head has changed (was: {marker.head_sha}, now: {current_head_sha})."
        try:
            client.update_comment(comment_id, markers.mark_resolved(comment_body))
        except GitHubApiError as exc:
            return CheckboxResult(success=False, error=f"{stale} Failed to mark comment as resolved: {exc}")
        return CheckboxResult(success=False, marked_as_resolved=True, error=f"{stale} Comment marked as resolved.")

    try:
        existing = get_file(client, marker.node_path, branch)
    except GitHubApiError as exc:
        return CheckboxResult(success=False, error=f"Failed to look up {marker.node_path}: {exc}")

    action = "update" if existing is not None else "create"
    update = reconstruct_update(comment_body, marker, action)
    if not update.suggested_content.strip():
        return CheckboxResult(success=False, error=f"No suggested content found in comment for {marker.node_path}")

    logger.info("applying comment=%s node=%s action=%s", comment_id, marker.node_path, action)
    try:
        if existing is None:
            results = create_intent_add_commit(
                client, update, branch, symlink=symlink, symlink_source=symlink_source
            )
        else:
            results = create_intent_update_commit(
                client, update, branch, existing["sha"], symlink=symlink, symlink_source=symlink_source
            )
    except Exception as exc:
        if is_already_reported(exc):
            raise
        return CheckboxResult(success=False, error=f"Failed to create commit: {exc}")

    primary, companions = _split_results(results, marker.node_path)
    body = markers.set_applied_commit(comment_body, primary.sha)
    body = markers.add_committed_status(body, primary.sha)
    try:
        client.update_comment(comment_id, body)
    except GitHubApiError as exc:
        return _unrecorded(comment_id, primary, companions, exc)
    logger.info("applied comment=%s sha=%s companions=%s", comment_id, primary.sha, len(companions))
    return CheckboxResult(success=True, commit_result=primary, companion_results=companions)


def handle_unchecked_checkbox(
    client: Any,
    comment_id: int,
    comment_body: str,
    marker: IntentMarker,
    *,
    branch: str,
    reason: str = "Reverted via checkbox",
) -> CheckboxResult:
    if not marker.is_applied:
        return CheckboxResult(success=True, skipped=True, reason="No applied commit to revert")

    logger.info("reverting comment=%s node=%s applied=%s", comment_id, marker.node_path, marker.applied_commit)
    try:
        results = create_intent_revert_commit(
            client,
            marker.applied_commit,
            marker.node_path,
            branch,
            other_node_path=marker.other_node_path,
            reason=reason,
        )
    except Exception as exc:
        if is_already_reported(exc):
            raise
        return CheckboxResult(success=False, error=f"Failed to create revert commit: {exc}")

    primary, companions = _split_results(results, marker.node_path)
    revert_sha = primary.sha if primary else (companions[0].sha if companions else None)
    body = markers.clear_applied_commit(comment_body)
    body = markers.add_reverted_status(body, revert_sha)
    try:
        client.update_comment(comment_id, body)
    except GitHubApiError as exc:
        return _unrecorded(comment_id, primary, companions, exc)
    logger.info("reverted comment=%s sha=%s", comment_id, revert_sha or "-")
    return CheckboxResult(success=True, commit_result=primary, companion_results=companions)


def handle_stable_checkbox(
    client: Any,
    comment_id: int,
    debounce: DebounceResult,
    current_head_sha: str,
    branch: str,
    settings: Settings,
) -> CheckboxResult:
    if not debounce.stable or debounce.marker is None or debounce.comment_body is None:
        return CheckboxResult(success=False, error="Failed to parse comment marker data or comment body")

    if debounce.is_checked:
        return handle_checked_checkbox(
            client,
            comment_id,
            debounce.comment_body,
            debounce.marker,
            current_head_sha,
            branch=branch,
            symlink=settings.symlink,
            symlink_source=settings.symlink_source,
        )

    if debounce.marker.is_applied and settings.check_history:
        validate_and_fail_on_insufficient_history()
    return handle_unchecked_checkbox(
        client,
        comment_id,
        debounce.comment_body,
        debounce.marker,
        branch=branch,
        reason=settings.revert_reason,
    )


def process_checkbox_event(client: Any, payload: dict[str, Any], settings: Settings) -> CheckboxResult | None:
    """Run one delivery through the protocol.

    Returns None when the event is not an approval checkbox edit at all.
    """
    event = validate_checkbox_event(payload)
    if event is None:
        logger.info("event is not a valid checkbox event, skipping")
        return None
    if not event.is_pull_request:
        logger.info("comment is not on a pull request, skipping issue=%s", event.issue_number)
        return None
    if not markers.has_marker(event.comment_body):
        logger.info("comment has no intent layer marker, skipping comment=%s", event.comment_id)
        return None

    logger.info("processing checkbox event comment=%s pr=%s", event.comment_id, event.issue_number)
    debounce = debounce_checkbox_toggle(client, event.comment_id, event.comment_body, settings.debounce_ms)
    if not debounce.stable:
        logger.info("checkbox state not stable comment=%s reason=%s", event.comment_id, debounce.reason)
        return CheckboxResult(success=True, skipped=True, reason=debounce.reason)

    try:
        pr = client.get_pull_request(event.issue_number)
    except GitHubApiError as exc:
        logger.error("pull request lookup failed pr=%s err=%s", event.issue_number, exc)
        return CheckboxResult(success=False, error=f"Failed to fetch pull request #{event.issue_number}: {exc}")
    head = pr.get("head") or {}
    result = handle_stable_checkbox(
        client,
        event.comment_id,
        debounce,
        head.get("sha", ""),
        head.get("ref", ""),
        settings,
    )

    if result.success and result.skipped:
        logger.info("no-op comment=%s reason=%s", event.comment_id, result.reason)
    elif result.success:
        logger.info("checkbox handled comment=%s checked=%s", event.comment_id, debounce.is_checked)
    elif result.marked_as_resolved:
        logger.info("comment marked as resolved comment=%s: %s", event.comment_id, result.error)
    else:
        logger.error("checkbox handling failed comment=%s: %s", event.comment_id, result.error)
    return result
