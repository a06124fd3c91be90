"""
Output context for ShadowTrace.
Every screen and log-file line goes through one ShadowTraceLogger; the file copy is flushed per line.
"""
from __future__ import annotations

import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.text import Text

_PREFIX_STYLES: tuple[tuple[str, str], ...] = (
    ("[INFO]", "cyan"),
    ("[WARNING]", "yellow"),
    ("[ERROR]", "red"),
    ("[DEBUG]", "grey50"),
)
_KEYWORD_STYLES: tuple[tuple[str, str], ...] = (
    (r"Match verified", "green"),
    (r"Candidate found", "yellow"),
    (r"not verified", "red"),
)
_MAX_DUMP_CHARS = 5000


def _clock(with_millis: bool = False) -> str:
    now = datetime.now()
    return now.strftime("%H:%M:%S.%f")[:-3] if with_millis else now.strftime("%H:%M:%S")


class ShadowTraceLogger:
    """Screen output through rich, plain text to an optional log file, plus one inline status line."""

    def __init__(self, log_file: Optional[Path] = None, debug: bool = False):
        self.log_file = log_file
        self.debug_mode = debug
        self._started = datetime.now()
        self._console = Console(highlight=False)
        self._status_width = 0
        self._noted_endpoints: set[str] = set()
        self._file_handle = None

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(log_file, "w", buffering=1, encoding="utf-8")

        from shadowtrace import __version__

        self.log(f"({_clock()}  Started ShadowTrace {__version__})")

    def log(self, msg: str, prefix: str = ""):
        line = prefix + msg
        self._clear_status()
        self._console.print(self._screen_text(line))
        if self._file_handle is None:
            return
        self._file_handle.write(line + "\n")
        self._file_handle.flush()
        os.fsync(self._file_handle.fileno())

    def status(self, msg: str):
        """Rewrite the inline status line in place. Never written to the log file."""
        pad = max(0, self._status_width - len(msg))
        print(f"\r{msg}{' ' * pad}", end="", flush=True)
        self._status_width = len(msg)

    def _clear_status(self) -> None:
        if self._status_width:
            print(f"\r{' ' * self._status_width}\r", end="", flush=True)
            self._status_width = 0

    def _screen_text(self, line: str) -> Text:
        # markup is never parsed; bracketed text in messages stays literal
        text = Text(line)
        for marker, style in _PREFIX_STYLES:
            at = line.find(marker)
            if at != -1:
                text.stylize(style, at, at + len(marker))
        for pattern, style in _KEYWORD_STYLES:
            for hit in re.finditer(pattern, line):
                text.stylize(style, hit.start(), hit.end())
        return text

    def info(self, msg: str):
        self.log(msg)

    def warning(self, msg: str):
        self.log(msg, "[WARNING] ")

    def error(self, msg: str):
        self.log(msg, "[ERROR] ")

    def debug(self, msg: str):
        if self.debug_mode:
            self.log(msg, f"[{_clock(with_millis=True)}] [DEBUG] ")

    def api_wait(self, endpoint: str, seconds: float):
        """First wait per endpoint gets an info line; the rest are silent (see api_wait_debug)."""
        _ = seconds
        key = endpoint.upper()
        if key not in self._noted_endpoints:
            self._noted_endpoints.add(key)
            self.log(f"API rate limiting active for {key}; requests are paused until slots free up.", "[INFO] ")

    def api_wait_debug(self, endpoint: str, seconds: float):
        self.debug(f"Rate limiting detail: waiting {seconds:.3f}s before next {endpoint} API call")

    def api_retry(self, what: str, attempt: int, max_attempts: int, delay: float):
        self.log(f"{what} failed. Retrying in {delay:g}s... (attempt {attempt}/{max_attempts})", "[WARNING] ")

    def api_failed(self, what: str, max_attempts: int):
        self.log(f"{what} failed after {max_attempts} attempts. Aborting.", "[ERROR] ")

    def _debug_dump(self, headline: str, label: str, body: Optional[dict], limit: Optional[int] = None):
        if not self.debug_mode:
            return
        stamp = f"[{_clock(with_millis=True)}] "
        self.log(headline, stamp)
        if not body:
            return
        dumped = json.dumps(body, indent=2)
        if limit is not None and len(dumped) > limit:
            dumped = dumped[:limit] + "\n  ... (truncated)"
        self.log(f"  {label}: {dumped}", stamp)

    def api_request(self, method: str, url: str, payload: dict):
        """Debug mode only: the outgoing request and its JSON body."""
        self._debug_dump(f"API Request: {method} {url}", "Payload", payload)

    def api_response(self, status: int, data: dict, elapsed_ms: float):
        """Debug mode only: status, timing and a truncated JSON body."""
        self._debug_dump(f"API Response ({elapsed_ms:.0f}ms): Status {status}", "Data", data, _MAX_DUMP_CHARS)

    def close(self):
        """Write the session footer and release the log file."""
        self._clear_status()
        if self._file_handle is None:
            return
        elapsed = (datetime.now() - self._started).total_seconds()
        self.log(f"({_clock()}  Ended session, elapsed {elapsed:.1f}s)")
        self._file_handle.close()
        self._file_handle = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# Installed by the CLI for the lifetime of a command
_logger: Optional[ShadowTraceLogger] = None


def set_logger(logger: ShadowTraceLogger):
    global _logger
    _logger = logger


def get_logger() -> ShadowTraceLogger:
    """Return the installed logger, creating a screen-only one on first use."""
    global _logger
    if _logger is None:
        _logger = ShadowTraceLogger()
    return _logger


def log(msg: str):
    get_logger().log(msg)


def info(msg: str):
    get_logger().info(msg)


def warning(msg: str):
    get_logger().warning(msg)


def error(msg: str):
    get_logger().error(msg)


def debug(msg: str):
    get_logger().debug(msg)
