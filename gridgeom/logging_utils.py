"""Structured log events for grid derivations and coordinate operations.

Events carry grid values (extents, envelopes, numpy arrays and scalars). They
are written into the message as JSON and passed to the record as ``extra``
attributes. Field names that would overwrite a ``LogRecord`` attribute are
stored with a ``field_`` prefix instead.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import numpy as np

_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _to_json(value: Any) -> Any:
    """JSON counterpart of grid values; ``str`` for anything else."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if hasattr(value, "low") and hasattr(value, "high"):
        return {"low": list(value.low), "high": list(value.high)}
    if hasattr(value, "lower") and hasattr(value, "upper"):
        return {"lower": list(value.lower), "upper": list(value.upper)}
    return str(value)


def _encode_context(context: Mapping[str, Any]) -> str:
    return json.dumps(context, default=_to_json, sort_keys=True, ensure_ascii=False)


def _record_fields(context: Mapping[str, Any]) -> dict[str, Any]:
    return {
        (f"field_{k}" if k in _RESERVED else k): v
        for k, v in context.items()
    }


def log_event(
    logger: logging.Logger,
    event: str,
    message: str,
    *,
    level: str = "info",
    **fields: Any,
) -> None:
    """Emit ``[event] message | {json context}``; ``None`` fields are dropped.

    Example:
        log_event(LOGGER, "derivation.subgrid", "Resolved sub-grid", low=(0, 0))
    """

    context = {k: v for k, v in fields.items() if v is not None}
    payload = f"[{event}] {message}"
    if context:
        payload = f"{payload} | {_encode_context(context)}"

    log_fn = getattr(logger, level, logger.info)
    log_fn(payload, extra={"event": event, **_record_fields(context)})
