"""Recover a structured change request from a proposal comment's markdown.

The generation step writes the proposal as free-form markdown, so the
extraction here is forgiving: anything missing comes back as an
empty string and the engine decides whether that is usable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from automation.intent_approval.markers import IntentMarker

DEFAULT_REASON = "Approved via checkbox"

# Fenced block opened directly under a heading, before the next ### heading.
_SECTION_TEMPLATE = (
    r"^###[ \t]+{title}[ \t]*\n"
    r"(?:(?!^###[ \t]).)*?"
    r"^(?P<fence>`{{3,}}|~{{3,}})[^\n]*\n"
    r"(?P<body>.*?)"
    r"^(?P=fence)[ \t]*$"
)
_SUGGESTED_RE = re.compile(_SECTION_TEMPLATE.format(title="Suggested Content"), re.DOTALL | re.MULTILINE)
_CURRENT_RE = re.compile(_SECTION_TEMPLATE.format(title="Current Content"), re.DOTALL | re.MULTILINE)
_HEADING_RE = re.compile(r"^###[ \t]+(?:Suggested|Current) Content", re.MULTILINE)
_DIFF_RE = re.compile(r"^(?P<fence>`{3,})diff[ \t]*\n(?P<body>.*?)^(?P=fence)[ \t]*$", re.DOTALL | re.MULTILINE)
_ANY_FENCE_RE = re.compile(r"^(?P<fence>`{3,}|~{3,})[^\n]*\n.*?^(?P=fence)[ \t]*$", re.DOTALL | re.MULTILINE)
_REASON_RE = re.compile(r"^[ \t]*(?:\*\*)?Reason:(?:\*\*)?[ \t]*(?P<text>\S.*?)[ \t]*$", re.MULTILINE)


@dataclass(frozen=True)
class ReconstructedUpdate:
    node_path: str
    action: str
    suggested_content: str
    reason: str
    other_node_path: str | None = None
    current_content: str | None = None


def _section(pattern: re.Pattern[str], body: str) -> str | None:
    match = pattern.search(body)
    return match.group("body") if match else None


def _split_diff(body: str) -> tuple[str, str] | None:
    match = _DIFF_RE.search(body)
    if not match:
        return None
    added: list[str] = []
    removed: list[str] = []
    in_hunk = False
    for line in match.group("body").splitlines():
        if line.startswith("@@"):
            in_hunk = True
            continue
        if line.startswith("diff --git "):
            in_hunk = False
            continue
        # File headers only appear before the first hunk.
        if not in_hunk and (line.startswith("--- ") or line.startswith("+++ ")):
            continue
        if line.startswith("+"):
            added.append(line[1:])
        elif line.startswith("-"):
            removed.append(line[1:])
    return "\n".join(added), "\n".join(removed)


def extract_reason(body: str) -> str:
    # Proposed content may itself contain a "Reason:" line; only look outside fences.
    prose = _ANY_FENCE_RE.sub("", body)
    match = _REASON_RE.search(prose)
    return match.group("text") if match else DEFAULT_REASON


def reconstruct_update(body: str, marker: IntentMarker, action: str) -> ReconstructedUpdate:
    suggested: str | None = None
    current: str | None = None

    if _HEADING_RE.search(body):
        suggested = _section(_SUGGESTED_RE, body)
        current = _section(_CURRENT_RE, body)
    else:
        diff = _split_diff(body)
        if diff is not None:
            suggested, current = diff

    return ReconstructedUpdate(
        node_path=marker.node_path,
        other_node_path=marker.other_node_path,
        action=action,
        suggested_content=suggested or "",
        current_content=current,
        reason=extract_reason(body),
    )
