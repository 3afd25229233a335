from __future__ import annotations

import logging

from automation.intent_approval.errors import (
    ConfigError,
    GitHubApiError,
    InsufficientHistoryError,
    SymlinkConflictError,
    format_config_error,
    is_already_reported,
    is_not_found,
    run,
)


def _raiser(exc: Exception):
    def _fn():
        raise exc

    return _fn


def test_not_found_only_for_404_api_errors() -> None:
    assert is_not_found(GitHubApiError(404, "Not Found"))
    assert not is_not_found(GitHubApiError(500, "boom"))
    assert not is_not_found(ValueError("404"))


def test_already_reported_flags() -> None:
    assert is_already_reported(InsufficientHistoryError("shallow"))
    assert is_already_reported(SymlinkConflictError("conflict", ["a", "b"]))
    assert not is_already_reported(GitHubApiError(500, "boom"))
    assert not is_already_reported(RuntimeError("x"))


def test_run_returns_zero_on_success() -> None:
    assert run(lambda: None) == 0


def test_run_logs_unexpected_errors_once(caplog) -> None:
    with caplog.at_level(logging.DEBUG, logger="intent-approval"):
        code = run(_raiser(RuntimeError("disk on fire")), action_name="Checkbox Handler")

    assert code == 1
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert errors[0].getMessage() == "Checkbox Handler Failed\n\ndisk on fire"


def test_run_does_not_relog_already_reported_errors(caplog) -> None:
    with caplog.at_level(logging.DEBUG, logger="intent-approval"):
        code = run(_raiser(SymlinkConflictError("conflict")))

    assert code == 1
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_run_formats_config_errors(caplog) -> None:
    exc = ConfigError("One or more settings are invalid", ["debounce_ms: -5 is less than the minimum of 0"])
    with caplog.at_level(logging.ERROR, logger="intent-approval"):
        assert run(_raiser(exc)) == 1

    assert caplog.records[-1].getMessage() == format_config_error(exc)
    assert "  - debounce_ms: -5 is less than the minimum of 0" in format_config_error(exc)
