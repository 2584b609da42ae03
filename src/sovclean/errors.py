"""Error taxonomy: pipeline exceptions and structured error/success envelopes."""

from __future__ import annotations

from typing import Any


class CleanError(Exception):
    """Base class for errors raised by the cleaning pipeline."""


class FatalInputError(CleanError):
    """The input tree cannot be cleaned at all (empty, oversized, bad paths).

    The only condition under which clean() returns no report.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class PatternTimeout(CleanError):
    """A file's rules ran past its time budget. The file is left unchanged."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"rule {rule_id} ran past the per-file time budget")
        self.rule_id = rule_id


def err(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    next_steps: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a structured error envelope."""
    return {
        "ok": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "nextSteps": next_steps or [],
        },
    }


def ok(result: dict[str, Any]) -> dict[str, Any]:
    """Build a structured success envelope."""
    return {"ok": True, "result": result}
