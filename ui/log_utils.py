"""Shared logging utilities.

File writes go through a single worker thread so request handlers never block
on disk I/O.
"""

import json
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from rich.console import Console

LOG_ROOT = Path.cwd() / "logs"
CLI_LOG_FILE = LOG_ROOT / "gateway.log"

_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gateway-log")
_stderr = Console(stderr=True)


def write_cli_log(
    level: str,
    message: str,
    **extra: Any,
) -> None:
    """Append a line to the rolling CLI log file."""
    timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
    extra_str = " ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""
    line = f"[{timestamp}] {level}: {message}"
    if extra_str:
        line += f" {extra_str}"
    line += "\n"
    _submit(_append_line, CLI_LOG_FILE, line)


def write_error_log(
    route: str,
    status: int,
    message: str,
    *,
    log_root: Path = LOG_ROOT,
) -> None:
    """Write a full error entry (tracebacks included) as its own JSON file."""
    payload = {
        "timestamp": _utc_now(),
        "route": route,
        "status": status,
        "message": message,
    }
    _submit(_write_json, log_root / "errors", payload)


def shutdown_log_executor() -> None:
    """Flush pending writes and stop the log worker."""
    _executor.shutdown(wait=True)


def _submit(fn, *args) -> None:
    _executor.submit(fn, *args).add_done_callback(_report_failure)


def _report_failure(future: Future) -> None:
    """Print a failed write to stderr."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        _stderr.print(f"Log write failed: {exc!r}", style="red", markup=False, highlight=False)


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as f:
        f.write(line)


def _write_json(folder: Path, payload: dict[str, Any]) -> Path:
    """Write payload to a unique JSON file in the given folder."""
    folder.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S.%fZ")
    file_path = folder / f"{timestamp}_{uuid4().hex}.json"
    file_path.write_text(json.dumps(payload, indent=2, default=str))
    return file_path


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()
