"""
In-memory API metrics, served at /metrics.

  requests        count + latency per route template (/project/{project_id}, not raw ids)
  errors          failures by error class, plus which vendor an upstream failure came from
  image fan-out   prompts sent vs images returned across all batches
  recent_errors   the last few failures, for RCA

Everything is process-local and resets on restart.
"""

import time
import threading
from collections import defaultdict, deque
from typing import Dict, Optional

_lock = threading.Lock()

LATENCY_WINDOW = 100
RECENT_ERRORS = 20

_started_at: Optional[float] = None
_request_counts: Dict[str, int] = defaultdict(int)
_latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=LATENCY_WINDOW))
_error_counts: Dict[str, int] = defaultdict(int)
_vendor_failures: Dict[str, int] = defaultdict(int)
_fan_out = {"batches": 0, "prompts": 0, "succeeded": 0}
_recent_errors: deque = deque(maxlen=RECENT_ERRORS)


def mark_started():
    global _started_at
    _started_at = time.time()


def record_request(route: str, duration_ms: float):
    """`route` must be a template or fixed name, never a path with ids in it."""
    with _lock:
        _request_counts[route] += 1
        _latencies[route].append(duration_ms)


def record_error(route: str, error_type: str, message: str, user_id: str = "", vendor: str = ""):
    with _lock:
        _error_counts[error_type] += 1
        if vendor:
            _vendor_failures[vendor] += 1
        _recent_errors.append({
            "timestamp": time.time(),
            "route": route,
            "error_type": error_type,
            "vendor": vendor,
            "message": message[:300],
            "user_id": user_id,
        })


def record_fan_out(prompts: int, succeeded: int):
    """One image batch: how many prompts went out, how many images came back."""
    with _lock:
        _fan_out["batches"] += 1
        _fan_out["prompts"] += prompts
        _fan_out["succeeded"] += succeeded


def _percentile(samples: list, fraction: float) -> float:
    ordered = sorted(samples)
    return ordered[min(len(ordered) - 1, int(len(ordered) * fraction))]


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        requests = {
            route: {
                "count": count,
                "p50_ms": _percentile(list(_latencies[route]), 0.5),
                "p95_ms": _percentile(list(_latencies[route]), 0.95),
            }
            for route, count in _request_counts.items()
            if _latencies[route]
        }
        prompts = _fan_out["prompts"]
        return {
            "uptime_seconds": now - _started_at if _started_at else 0.0,
            "requests": requests,
            "errors": dict(_error_counts),
            "vendor_failures": dict(_vendor_failures),
            "image_fan_out": {
                **_fan_out,
                "success_ratio": _fan_out["succeeded"] / prompts if prompts else None,
            },
            "recent_errors": list(_recent_errors)[-10:],
        }


def reset():
    """Clear everything (tests)."""
    global _started_at
    with _lock:
        _started_at = None
        _request_counts.clear()
        _latencies.clear()
        _error_counts.clear()
        _vendor_failures.clear()
        _fan_out.update(batches=0, prompts=0, succeeded=0)
        _recent_errors.clear()
