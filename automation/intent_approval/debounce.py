"""Settle a checkbox toggle before acting on it.

Toggling a checkbox can fire several webhook deliveries in quick succession.
Each invocation waits, re-reads the comment and only proceeds when the
checkbox still reads the same. This filters rapid re-toggling; it is not a
lock, two deliveries can both pass and rely on the engine's idempotency.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from automation.intent_approval.markers import IntentMarker, decode_marker, is_checkbox_checked

logger = logging.getLogger("intent-approval")

DEFAULT_DEBOUNCE_DELAY_MS = 1500


@dataclass(frozen=True)
class DebounceResult:
    stable: bool
    is_checked: bool | None = None
    comment_body: str | None = None
    marker: IntentMarker | None = None
    reason: str = ""


def sleep_ms(ms: int) -> None:
    if ms > 0:
        time.sleep(ms / 1000)


def debounce_checkbox_toggle(
    client: Any,
    comment_id: int,
    initial_body: str,
    delay_ms: int = DEFAULT_DEBOUNCE_DELAY_MS,
) -> DebounceResult:
    if decode_marker(initial_body) is None:
        return DebounceResult(stable=False, reason="Comment does not contain a valid intent layer marker")

    initial_checked = is_checkbox_checked(initial_body)
    sleep_ms(delay_ms)

    try:
        comment = client.get_comment(comment_id)
    except Exception as exc:
        logger.warning("debounce re-fetch failed comment=%s err=%s", comment_id, exc)
        return DebounceResult(stable=False, reason=f"Failed to re-fetch comment: {exc or 'Unknown error'}")

    body = (comment or {}).get("body") or ""
    if not body:
        return DebounceResult(stable=False, reason="Comment body is empty after re-fetch")

    marker = decode_marker(body)
    if marker is None:
        return DebounceResult(stable=False, reason="Comment marker is no longer valid after re-fetch")

    current_checked = is_checkbox_checked(body)
    if current_checked != initial_checked:
        return DebounceResult(
            stable=False,
            reason=(
                "Checkbox state changed during debounce period "
                f"(was: {str(initial_checked).lower()}, now: {str(current_checked).lower()})"
            ),
        )

    return DebounceResult(stable=True, is_checked=current_checked, comment_body=body, marker=marker)
