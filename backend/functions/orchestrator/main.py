import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from functools import lru_cache
from typing import Any

import functions_framework
import numpy as np
from flask import Request, Response

import command_service
import config
from executor import ExecutorSettings, TableOperationExecutor
from formatting import format_analytics_result
from gemini_client import LLMSettings, ToolCallingClient
from schemas import OperationValidationError, operations_to_wire
from table_state import TableState, ingest_rows

# Configuration (centralized)
CLASSIFIER_TIMEOUT_SECONDS = config.CLASSIFIER_TIMEOUT_SECONDS
MAX_ROWS = config.MAX_ROWS
ALLOWED_ORIGINS = config.ALLOWED_ORIGINS

TIMEOUT_MESSAGE = "The request timed out. Please try again."


def _origin_allowed(origin: str | None) -> bool:
    return origin in ALLOWED_ORIGINS if origin else False


# Validate configuration at startup (logs warnings for suspicious values)
config.validate_config(logger=logging)


@lru_cache(maxsize=1)
def _llm_client() -> ToolCallingClient | None:
    settings = LLMSettings.from_config()
    if not settings.api_key:
        return None
    return ToolCallingClient(settings)


def _json_default(obj: Any):
    if isinstance(obj, np.generic):
        return obj.item()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _json(body: dict, status: int, origin: str) -> Response:
    headers = {"Access-Control-Allow-Origin": origin} if origin else {}
    return Response(json.dumps(body, default=_json_default), status, headers=headers, mimetype="application/json")


def _preflight(origin: str):
    if not _origin_allowed(origin): return ("Origin not allowed", 403)
    headers = {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "3600",
    }
    return ("", 204, headers)


def _generate_with_timeout(message: str):
    """Run the command service under CLASSIFIER_TIMEOUT_SECONDS. Returns None on timeout."""
    ex = ThreadPoolExecutor(max_workers=1)
    try:
        fut = ex.submit(command_service.generate_operations, message, _llm_client())
        try:
            return fut.result(timeout=CLASSIFIER_TIMEOUT_SECONDS)
        except FuturesTimeout:
            logging.info(json.dumps({"event": "classifier_timeout", "seconds": CLASSIFIER_TIMEOUT_SECONDS}))
            return None
    finally:
        ex.shutdown(wait=False, cancel_futures=True)


def _load_table(payload: dict):
    rows = ingest_rows(payload.get("rows"), max_rows=MAX_ROWS)
    state = TableState.from_dict(payload.get("state"))
    return rows, state


@functions_framework.http
def chat(request: Request) -> Response:
    """Apply one natural-language table request: {message, rows, state?}."""
    origin = request.headers.get("Origin") or ""
    if request.method == "OPTIONS":
        return _preflight(origin)

    try:
        if not _origin_allowed(origin):
            return _json({"error": "origin not allowed"}, 403, "")

        payload = request.get_json(silent=True) or {}
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip() or payload.get("rows") is None:
            return _json({"error": "missing message or rows"}, 400, origin)

        try:
            rows, state = _load_table(payload)
        except OperationValidationError as e:
            return _json({"error": "invalid request", "detail": str(e)}, 400, origin)

        t0 = time.perf_counter()
        ops = _generate_with_timeout(message)
        if ops is None or not ops.success:
            text = TIMEOUT_MESSAGE if ops is None else ops.text
            return _json({
                "success": False,
                "message": text,
                "operations": [],
                "state": state.to_dict(),
                "result": None,
                "formatted": text,
            }, 200, origin)

        executor = TableOperationExecutor(rows, state, ExecutorSettings.from_config())
        result = executor.execute_operations(ops)
        snapshot = executor.snapshot()
        logging.info(json.dumps({
            "event": "chat_done",
            "source": ops.source,
            "operations": len(ops.operations),
            "rows": len(rows),
            "elapsed_ms": int((time.perf_counter() - t0) * 1000),
        }))
        return _json({
            "success": True,
            "message": snapshot["message"],
            "operations": operations_to_wire(ops.operations),
            "state": snapshot["state"],
            "result": snapshot["result"],
            "groupSummary": snapshot["groupSummary"],
            "formatted": format_analytics_result(result) if result is not None else snapshot["message"],
        }, 200, origin)

    except Exception as e:
        logging.exception("chat failed")
        return _json({"error": "internal error", "detail": str(e)}, 500, origin)


@functions_framework.http
def analyze(request: Request) -> Response:
    """Run one analytics request directly: {rows, state?, analysis}."""
    origin = request.headers.get("Origin") or ""
    if request.method == "OPTIONS":
        return _preflight(origin)

    try:
        if not _origin_allowed(origin):
            return _json({"error": "origin not allowed"}, 403, "")

        payload = request.get_json(silent=True) or {}
        analysis = payload.get("analysis")
        if not isinstance(analysis, dict) or payload.get("rows") is None:
            return _json({"error": "missing analysis or rows"}, 400, origin)

        try:
            rows, state = _load_table(payload)
        except OperationValidationError as e:
            return _json({"error": "invalid request", "detail": str(e)}, 400, origin)

        executor = TableOperationExecutor(rows, state, ExecutorSettings.from_config())
        result = executor.execute_analysis(analysis)
        return _json({
            "success": not result.is_error,
            "result": result.to_dict(),
            "formatted": format_analytics_result(result),
        }, 200, origin)

    except Exception as e:
        logging.exception("analyze failed")
        return _json({"error": "internal error", "detail": str(e)}, 500, origin)
