"""Hidden approval marker embedded in intent layer PR comments.

The comment body is the only place the approval state lives between runs. A
single HTML comment line carries it:

    <!-- INTENT_LAYER node=<path> [otherNode=<path>] appliedCommit=<sha> headSha=<sha> -->

Paths are percent-encoded so they never contain spaces. ``appliedCommit`` is
empty until the change has been committed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Iterable
from urllib.parse import quote, unquote

MARKER_PREFIX = "<!-- INTENT_LAYER"
MARKER_SUFFIX = "-->"

CHECKBOX_LABEL = "Apply this change"
CHECKED_LINE = f"- [x] {CHECKBOX_LABEL}"
UNCHECKED_LINE = f"- [ ] {CHECKBOX_LABEL}"

RESOLVED_TAG = "**RESOLVED**"
RESOLVED_BANNER = f"{RESOLVED_TAG} - This suggestion is no longer applicable (PR has been updated)."

STATUS_PREFIX = "_Status:_ "

# encodeURIComponent leaves these unescaped; keep the wire format identical.
_URI_COMPONENT_SAFE = "!~*'()"

_MARKER_RE = re.compile(re.escape(MARKER_PREFIX) + r"\s+(.+?)\s+" + re.escape(MARKER_SUFFIX))
_CHECKBOX_RE = re.compile(r"^([ \t]*)- \[( |x)\] " + re.escape(CHECKBOX_LABEL), re.IGNORECASE | re.MULTILINE)
_SEPARATOR_RE = re.compile(r"^---[ \t]*$", re.MULTILINE)
_STATUS_RE = re.compile(r"^" + re.escape(STATUS_PREFIX) + r".*\n\n?", re.MULTILINE)


@dataclass(frozen=True)
class IntentMarker:
    node_path: str
    head_sha: str
    other_node_path: str | None = None
    applied_commit: str = ""

    @property
    def is_applied(self) -> bool:
        return bool(self.applied_commit)


def _escape(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def encode_marker(marker: IntentMarker) -> str:
    parts = [f"node={_escape(marker.node_path)}"]
    if marker.other_node_path:
        parts.append(f"otherNode={_escape(marker.other_node_path)}")
    parts.append(f"appliedCommit={marker.applied_commit or ''}")
    parts.append(f"headSha={marker.head_sha}")
    return f"{MARKER_PREFIX} {' '.join(parts)} {MARKER_SUFFIX}"


def decode_marker(body: str | None) -> IntentMarker | None:
    """Parse the marker out of a comment body.

    Returns None when the delimiters are missing or ``node``/``headSha`` is
    absent. Unknown keys are ignored so older and newer writers can coexist.
    """
    if not body:
        return None
    match = _MARKER_RE.search(body)
    if not match:
        return None

    fields: dict[str, str] = {}
    for token in match.group(1).split():
        key, sep, value = token.partition("=")
        if sep and key not in fields:
            fields[key] = value

    node = fields.get("node", "")
    head_sha = fields.get("headSha", "")
    if not node or not head_sha:
        return None

    other = fields.get("otherNode", "")
    return IntentMarker(
        node_path=unquote(node),
        head_sha=head_sha,
        other_node_path=unquote(other) if other else None,
        applied_commit=fields.get("appliedCommit", ""),
    )


def has_marker(body: str | None) -> bool:
    return bool(body) and MARKER_PREFIX in body


def replace_marker(body: str, marker: IntentMarker) -> str:
    if not _MARKER_RE.search(body):
        return body
    encoded = encode_marker(marker)
    return _MARKER_RE.sub(lambda _m: encoded, body, count=1)


def set_applied_commit(body: str, applied_commit: str) -> str:
    marker = decode_marker(body)
    if marker is None:
        return body
    return replace_marker(body, replace(marker, applied_commit=applied_commit))


def clear_applied_commit(body: str) -> str:
    return set_applied_commit(body, "")


def detect_checkbox_state(body: str | None) -> tuple[bool, bool]:
    """Return (has_checkbox, is_checked) for the approval checkbox."""
    match = _CHECKBOX_RE.search(body or "")
    if not match:
        return False, False
    return True, match.group(2).lower() == "x"


def is_checkbox_checked(body: str | None) -> bool:
    return detect_checkbox_state(body)[1]


def set_checkbox_state(body: str, checked: bool) -> str:
    line = CHECKED_LINE if checked else UNCHECKED_LINE
    return _CHECKBOX_RE.sub(lambda m: m.group(1) + line, body, count=1)


def is_resolved(body: str | None) -> bool:
    return bool(body) and RESOLVED_TAG in body


def mark_resolved(body: str) -> str:
    if is_resolved(body):
        return body
    return _MARKER_RE.sub(lambda m: f"{m.group(0)}\n\n{RESOLVED_BANNER}\n", body, count=1)


def set_status(body: str, text: str) -> str:
    """Replace the status line, placing it just above the checkbox separator."""
    body = _STATUS_RE.sub("", body)
    line = f"{STATUS_PREFIX}{text}\n\n"

    checkbox = _CHECKBOX_RE.search(body)
    if checkbox:
        separators = [m for m in _SEPARATOR_RE.finditer(body, 0, checkbox.start())]
        anchor = separators[-1].start() if separators else checkbox.start()
        return body[:anchor] + line + body[anchor:]
    return body.rstrip("\n") + "\n\n" + line.rstrip("\n")


def add_committed_status(body: str, sha: str) -> str:
    return set_status(body, f"Committed in `{sha}`")


def add_reverted_status(body: str, sha: str | None) -> str:
    if not sha:
        return set_status(body, "Reverted (nothing left to undo on the branch)")
    return set_status(body, f"Reverted in `{sha}`")


def _fenced(content: str) -> str:
    fence = "```"
    while fence in content:
        fence += "`"
    body = content.rstrip("\n")
    return f"{fence}markdown\n{body}\n{fence}"


def render_comment(update: Any, head_sha: str, include_checkbox: bool = True) -> str:
    """Render the proposal comment posted for a single intent node.

    ``update`` is anything exposing node_path, other_node_path,
    suggested_content, current_content and reason.
    """
    marker = IntentMarker(
        node_path=update.node_path,
        head_sha=head_sha,
        other_node_path=getattr(update, "other_node_path", None),
    )
    lines = [encode_marker(marker), ""]
    current = getattr(update, "current_content", None)
    if current:
        lines += ["### Current Content", "", _fenced(current), ""]
    lines += ["### Suggested Content", "", _fenced(update.suggested_content), ""]
    lines += [f"Reason: {update.reason}", ""]
    if include_checkbox:
        lines += ["---", "", UNCHECKED_LINE]
    return "\n".join(lines)


def find_marker_comments(comments: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [c for c in comments if has_marker(c.get("body"))]


def find_comment_for_node(comments: Iterable[dict[str, Any]], node_path: str) -> dict[str, Any] | None:
    for comment in comments:
        marker = decode_marker(comment.get("body"))
        if marker and marker.node_path == node_path:
            return comment
    return None
