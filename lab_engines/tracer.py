"""
lab_engines.tracer -- Engine invocation tracer emitting LAB_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps pure engine calls with one DEBUG log record
    carrying the engine name and version, a fingerprint of the selected
    keyword inputs, and the call duration.  Two calls with equal traced
    inputs share a fingerprint, which is how a gate decision in the logs
    is matched to the inputs that produced it.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; engines stay free of I/O.

Usage:
    @traced_engine("date_gate", "1.0", fingerprint_fields=("experiment_date", "today", "role"))
    def evaluate_date_gate(*, experiment_date, today, role, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

_logger = logging.getLogger("lab_kernel.engines.tracer")

TRACE_TYPE = "LAB_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        body = ",".join(
            f"{key}:{_canonicalize(value[key])}" for key in sorted(value, key=str)
        )
        return "{" + body + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    # Dates, Decimals, enums and UUIDs all have stable str() forms.
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over the named kwargs (missing -> "null")."""
    digest = hashlib.sha256()
    for name in fingerprint_fields:
        digest.update(f"{name}={_canonicalize(kwargs.get(name))};".encode("utf-8"))
    return digest.hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorate an engine entry point so each call emits LAB_ENGINE_TRACE."""

    def decorator(func: Callable) -> Callable:
        trace_fields = {
            "trace_type": TRACE_TYPE,
            "engine_name": engine_name,
            "engine_version": engine_version,
            "function": func.__qualname__,
        }

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug(
                    TRACE_TYPE,
                    extra={
                        **trace_fields,
                        "input_fingerprint": compute_input_fingerprint(
                            fingerprint_fields, kwargs
                        )
                        if fingerprint_fields
                        else "",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    },
                )
            return result

        return wrapper

    return decorator
