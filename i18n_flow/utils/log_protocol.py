"""Machine-readable JSON log protocol.

Emits one structured line per event to stdout so a supervising process can
follow a run. Protocol prefixes:
  JSON_PROGRESS:   items done, percent, elapsed, ETA
  JSON_STAGE:      stage boundaries
  JSON_ITEM:       one translated key
  JSON_WARNING:    recoverable problems (decode, validation)
  JSON_ERROR:      fatal failure
  JSON_FINAL:      summary statistics
"""

from __future__ import annotations

import json
import sys
import threading
from typing import Any, Dict, Optional

_stdout_lock = threading.Lock()


def emit(prefix: str, data: Dict[str, Any]) -> None:
    """Thread-safe JSON log emission, one ``PREFIX:{json}`` line."""
    with _stdout_lock:
        sys.stdout.write(f"\n{prefix}:{json.dumps(data, ensure_ascii=False)}\n")
        sys.stdout.flush()


def emit_progress(*, current: int, total: int, elapsed: float, cached: int = 0) -> None:
    percent = round(current / max(total, 1) * 100, 1)
    remaining = (elapsed / max(current, 1)) * (total - current) if current > 0 else 0
    emit("JSON_PROGRESS", {
        "current": current,
        "total": total,
        "cached": cached,
        "percent": percent,
        "elapsed": round(elapsed, 1),
        "remaining": round(max(0, remaining), 1),
    })


def emit_stage(stage: str, status: str) -> None:
    emit("JSON_STAGE", {"stage": stage, "status": status})


def emit_item(key: str, status: str, *, cached: bool = False) -> None:
    emit("JSON_ITEM", {"key": key, "status": status, "cached": cached})


def emit_warning(message: str, warn_type: str = "quality", key: Optional[str] = None) -> None:
    payload: Dict[str, Any] = {"type": warn_type, "message": message}
    if key is not None:
        payload["key"] = key
    emit("JSON_WARNING", payload)


def emit_error(message: str, title: str = "Translation Pipeline Error") -> None:
    """Emit JSON_ERROR for critical failures."""
    emit("JSON_ERROR", {
        "title": title,
        "message": message,
    })


def emit_final(
    *,
    total_time: float,
    total_keys: int,
    translated_keys: int,
    cached_keys: int,
    warnings: int = 0,
    errors: int = 0,
    total_input_tokens: int = 0,
    total_output_tokens: int = 0,
) -> None:
    emit("JSON_FINAL", {
        "totalTime": round(total_time, 1),
        "totalKeys": total_keys,
        "translatedKeys": translated_keys,
        "cachedKeys": cached_keys,
        "warnings": warnings,
        "errors": errors,
        "totalInputTokens": total_input_tokens,
        "totalOutputTokens": total_output_tokens,
    })
