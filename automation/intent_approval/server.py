#!/usr/bin/env python3
"""GitHub webhook -> intent layer checkbox approval.

Two ways in:
- serve: HTTP receiver for `issue_comment` deliveries (one linear run per delivery)
- handle-event: run once on a GitHub Actions event payload file
"""

from __future__ import annotations

import argparse
import hashlib
import hmac
import json
import logging
import os
from dataclasses import asdict
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

from automation.intent_approval.checkbox import CheckboxResult, process_checkbox_event
from automation.intent_approval.config import Settings, load_settings
from automation.intent_approval.errors import is_already_reported, run
from automation.intent_approval.github_api import GitHubClient

LOG_DIR = Path(os.getenv("INTENT_APPROVAL_LOG_DIR", Path.cwd() / ".intent-approval"))
LOG_FILE = Path(os.getenv("INTENT_APPROVAL_LOG_FILE", LOG_DIR / "intent-approval.log"))

HOST = os.getenv("INTENT_APPROVAL_HOST", "127.0.0.1")
PORT = int(os.getenv("INTENT_APPROVAL_PORT", "8788"))

WEBHOOK_SECRET = os.getenv("GITHUB_WEBHOOK_SECRET", "")
GH_TOKEN = os.getenv("GITHUB_TOKEN", "")
GH_API = os.getenv("GITHUB_API_URL", "https://api.github.com")

EVENTS_ALLOWED = {"issue_comment"}
COMMENT_ACTIONS_ALLOWED = {"edited"}

# The receiver does not run inside a clone of the target repo.
# INTENT_CHECK_HISTORY=1 turns the history check back on.
SERVE_DEFAULTS = {"check_history": False}

logger = logging.getLogger("intent-approval")


def _setup_logging() -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(LOG_FILE, encoding="utf-8"),
        ],
    )


def _verify_signature(body: bytes, signature_header: str) -> bool:
    if not WEBHOOK_SECRET:
        return False
    if not signature_header.startswith("sha256="):
        return False
    expected = "sha256=" + hmac.new(
        WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature_header)


def _client_for(payload: dict[str, Any]) -> GitHubClient:
    repo = payload.get("repository", {}).get("full_name") or os.getenv("GITHUB_REPOSITORY", "")
    if not GH_TOKEN:
        raise RuntimeError("GITHUB_TOKEN is required to act on checkbox events")
    return GitHubClient(repo, GH_TOKEN, GH_API)


def _result_payload(result: CheckboxResult | None) -> dict[str, Any]:
    if result is None:
        return {"ok": True, "ignored": "not an intent layer checkbox event"}
    out = asdict(result)
    out["ok"] = result.success
    return out


def _serve_settings() -> Settings:
    return load_settings(defaults=SERVE_DEFAULTS)


def handle_event_file(path: str | Path) -> CheckboxResult | None:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    settings = load_settings()
    logger.info("handling event file=%s", path)
    result = process_checkbox_event(_client_for(payload), payload, settings)
    if result is not None and not result.success and not result.marked_as_resolved:
        raise RuntimeError(result.error)
    return result


class Handler(BaseHTTPRequestHandler):
    def log_message(self, fmt: str, *args: Any) -> None:
        logger.info("http %s - %s", self.address_string(), fmt % args)

    def _respond(self, code: HTTPStatus, payload: dict[str, Any]) -> None:
        data = json.dumps(payload).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/healthz":
            self._respond(HTTPStatus.OK, {"ok": True})
            return
        self._respond(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})

    def do_POST(self) -> None:  # noqa: N802
        if self.path != "/github/webhook":
            self._respond(HTTPStatus.NOT_FOUND, {"ok": False, "error": "not found"})
            return

        body = self.rfile.read(int(self.headers.get("Content-Length", "0")))
        sig = self.headers.get("X-Hub-Signature-256", "")
        evt = self.headers.get("X-GitHub-Event", "")
        delivery = self.headers.get("X-GitHub-Delivery", "")

        if evt not in EVENTS_ALLOWED:
            self._respond(HTTPStatus.OK, {"ok": True, "ignored": f"event {evt}"})
            return

        if not _verify_signature(body, sig):
            self._respond(HTTPStatus.UNAUTHORIZED, {"ok": False, "error": "bad signature"})
            return

        payload = json.loads(body.decode("utf-8"))
        action = payload.get("action")
        if action not in COMMENT_ACTIONS_ALLOWED:
            self._respond(HTTPStatus.OK, {"ok": True, "ignored": f"action {action}"})
            return

        logger.info("delivery=%s event=%s action=%s", delivery, evt, action)
        try:
            result = process_checkbox_event(_client_for(payload), payload, _serve_settings())
        except Exception as exc:
            if not is_already_reported(exc):
                logger.exception("delivery=%s failed", delivery)
            self._respond(HTTPStatus.INTERNAL_SERVER_ERROR, {"ok": False, "error": str(exc)})
            return

        code = HTTPStatus.OK
        if result is not None and not result.success and not result.marked_as_resolved:
            code = HTTPStatus.BAD_GATEWAY
        self._respond(code, _result_payload(result))


def serve() -> None:
    logger.info("Intent approval listening on http://%s:%s/github/webhook", HOST, PORT)
    logger.info("Health endpoint: http://%s:%s/healthz", HOST, PORT)
    logger.info("Log file: %s", LOG_FILE)
    if not WEBHOOK_SECRET:
        logger.warning("GITHUB_WEBHOOK_SECRET is empty; signature checks will fail.")
    server = ThreadingHTTPServer((HOST, PORT), Handler)
    server.serve_forever()


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply or revert intent layer changes from PR comment checkboxes.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the webhook receiver")
    handle = sub.add_parser("handle-event", help="Process a single event payload file")
    handle.add_argument(
        "--event-path",
        default=os.getenv("GITHUB_EVENT_PATH", ""),
        help="Path to the event JSON (defaults to GITHUB_EVENT_PATH)",
    )
    args = parser.parse_args()

    _setup_logging()
    if args.command == "serve":
        return run(serve, action_name="Intent Approval Server")
    if not args.event_path:
        parser.error("--event-path or GITHUB_EVENT_PATH is required")
    return run(lambda: handle_event_file(args.event_path))


if __name__ == "__main__":
    raise SystemExit(main())
