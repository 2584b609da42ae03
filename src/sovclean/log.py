"""Structured event logger: one line per event on stderr.

stdout belongs to the JSON-RPC transport, so nothing here ever writes there.
"""

from __future__ import annotations

import os
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TextIO

_LEVEL_PRIORITY = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}

_LEVEL_ALIASES = {
    "WARN": "WARNING",
    "WARNING": "WARNING",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "ERROR": "ERROR",
}

_MODE_ALIASES = {
    "": "normal",
    "normal": "normal",
    "default": "normal",
    "quiet": "quiet",
    "verbose": "verbose",
    "debug": "debug",
}

LOG_MODE_ENV = "SOVCLEAN_LOG_MODE"


def format_duration(seconds: float) -> str:
    if seconds < 0:
        return "0ms"
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes = int(seconds // 60)
    remain = seconds - minutes * 60
    return f"{minutes}m{remain:.2f}s"


def _normalize_level(level: str) -> str:
    return _LEVEL_ALIASES.get((level or "INFO").upper(), "INFO")


def _normalize_mode(mode: str) -> str:
    return _MODE_ALIASES.get((mode or "").strip().lower(), "normal")


def _sanitize(value: Any) -> str:
    return str(value).replace("\n", "\\n").replace("\r", "\\r")


@dataclass
class EventLogger:
    """Line logger: `[ts] [LEVEL] [component] event | message | k=v, ...`.

    Mode comes from the constructor, else SOVCLEAN_LOG_MODE, else `normal`.
    `quiet` keeps warnings and errors only; `debug` adds DEBUG lines.
    """

    component: str
    verbose: bool = False
    mode: str = ""
    stream: TextIO | None = None

    def _effective_mode(self) -> str:
        if self.mode:
            return _normalize_mode(self.mode)
        env_mode = os.getenv(LOG_MODE_ENV, "").strip()
        if env_mode:
            return _normalize_mode(env_mode)
        return "verbose" if self.verbose else "normal"

    def _should_emit(self, level: str) -> bool:
        mode = self._effective_mode()
        if mode == "debug":
            threshold = _LEVEL_PRIORITY["DEBUG"]
        elif mode == "quiet":
            threshold = _LEVEL_PRIORITY["WARNING"]
        else:
            threshold = _LEVEL_PRIORITY["INFO"]
        return _LEVEL_PRIORITY.get(level, 20) >= threshold

    def child(self, component: str) -> EventLogger:
        return EventLogger(
            component=f"{self.component}.{component}",
            verbose=self.verbose,
            mode=self.mode,
            stream=self.stream,
        )

    def log(self, level: str, event: str, message: str = "", **fields: Any) -> None:
        normalized_level = _normalize_level(level)
        if not self._should_emit(normalized_level):
            return

        ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        parts = [f"[{ts}]", f"[{normalized_level}]", f"[{self.component}]"]

        tail = event.strip() if event else "event"
        if message:
            tail += f" | {_sanitize(message)}"

        field_items = [f"{k}={_sanitize(v)}" for k, v in fields.items() if v is not None]
        if field_items:
            tail += " | " + ", ".join(field_items)

        stream = self.stream if self.stream is not None else sys.stderr
        print(" ".join(parts) + " " + tail, file=stream, flush=True)

    def debug(self, event: str, message: str = "", **fields: Any) -> None:
        self.log("DEBUG", event, message, **fields)

    def info(self, event: str, message: str = "", **fields: Any) -> None:
        self.log("INFO", event, message, **fields)

    def warning(self, event: str, message: str = "", **fields: Any) -> None:
        self.log("WARNING", event, message, **fields)

    def error(self, event: str, message: str = "", **fields: Any) -> None:
        self.log("ERROR", event, message, **fields)

    def exception(self, event: str, exc: BaseException, **fields: Any) -> None:
        self.error(event, str(exc), error_type=type(exc).__name__, **fields)
        if self._effective_mode() != "debug":
            return
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).strip()
        for line in trace.splitlines():
            if line.strip():
                self.debug("traceback", line)


def get_logger(component: str) -> EventLogger:
    return EventLogger(component=f"sovclean.{component}")
