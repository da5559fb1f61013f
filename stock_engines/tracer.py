"""
stock_engines.tracer -- STOCK_ENGINE_TRACE records for engine calls.

Responsibility:
    ``@traced_engine`` logs one record per engine call carrying the
    quantities that explain the outcome: the chosen keyword inputs (the
    requirement, the opening, the truth quantity), the number of candidate
    rows or batches the engine looked at, and a per-engine summary of the
    result (allocated and short, rows to rewrite, lines still owed).

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; never touches a session or mutates inputs.

Failure modes:
    - A summarizer that raises is a programming error and propagates; the
      engine result is not returned.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Sized
from decimal import Decimal
from typing import Any

_logger = logging.getLogger("stock_kernel.engines.tracer")

Summarizer = Callable[[Any], dict[str, Any]]


def _loggable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def _input_sizes(kwargs: dict[str, Any]) -> dict[str, int]:
    """Length of every sized, non-string keyword input (candidates, days, lines)."""
    return {
        f"{name}_count": len(value)
        for name, value in kwargs.items()
        if isinstance(value, Sized) and not isinstance(value, (str, bytes))
    }


def traced_engine(
    engine_name: str,
    engine_version: str,
    inputs: tuple[str, ...] = (),
    summarize: Summarizer | None = None,
) -> Callable:
    """Decorator emitting STOCK_ENGINE_TRACE after each successful call.

    Args:
        engine_name: Engine identifier (e.g., "fifo").
        engine_version: Engine version (e.g., "1.0").
        inputs: Keyword arguments logged verbatim (Decimals as strings).
        summarize: Maps the engine result to extra trace fields.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            fields: dict[str, Any] = {
                "trace_type": "STOCK_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "duration_ms": duration_ms,
            }
            fields.update({name: _loggable(kwargs.get(name)) for name in inputs})
            fields.update(_input_sizes(kwargs))
            if summarize is not None:
                fields.update(
                    {k: _loggable(v) for k, v in summarize(result).items()}
                )

            _logger.info("STOCK_ENGINE_TRACE", extra=fields)
            return result

        return wrapper

    return decorator
