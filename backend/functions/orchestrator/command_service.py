"""
Utterance -> validated table operations.

The LLM proposes tool calls; each call is validated by the tool layer before
it becomes an Operation. When the LLM is unavailable or returns nothing, a
small heuristic parser handles the common single-step asks.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aliases
import config
from gemini_client import LLMSettings, ToolCallingClient
from schemas import ClearFiltersOperation, OperationValidationError, operations_to_wire
from tools import CLEAR_FILTERS_MESSAGE, execute_tool, tool_result_to_operation
from verbs import classify_verbs

NO_ACTION_MESSAGE = "No action applied"
NOT_UNDERSTOOD_MESSAGE = (
    "Could not understand the request. Try something like 'Sort by price descending', "
    "'Show cities with population over 200000' or 'What is the average price?'"
)


@dataclass
class OperationsResult:
    success: bool
    operations: list = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    text: str = ""
    source: str = "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "operations": operations_to_wire(self.operations),
            "messages": list(self.messages),
            "text": self.text,
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Heuristic fallback
# ---------------------------------------------------------------------------

_DESC_WORDS = r"desc|descending|high to low|highest first|largest first|biggest first"
_ASC_WORDS = r"asc|ascending|low to high|lowest first|smallest first|alphabetically"
# "remove the filter on city" names one filter, so a bare "filter" must end the clause
_CLEAR_FILTERS_RE = re.compile(
    r"\b(?:clear|reset|remove)\s+"
    r"(?:all\s+(?:the\s+)?filters?\b|(?:the\s+)?filters?(?=\s*(?:$|[,.;!?]|and\b|then\b)))"
    r"|\bshow\s+all\s+rows\b"
)


def is_clear_filters_request(utterance: str) -> bool:
    return bool(_CLEAR_FILTERS_RE.search(" ".join((utterance or "").lower().split())))


def heuristic_tool_calls(utterance: str) -> List[Dict[str, Any]]:
    """Recognise simple single-step asks without the LLM.

    Returns a list of {"name", "args"} tool calls (possibly empty).
    """
    ql = " ".join((utterance or "").lower().split())
    if not ql:
        return []

    if re.search(r"\b(clear|reset)\s+(all\s+|the\s+)?selections?\b|\bdeselect\b|\bselect\s+none\b|\bunselect\b", ql):
        return [{"name": "apply_selection", "args": {"action": "selectNone"}}]
    if re.search(r"\binvert\s+(the\s+)?selection\b", ql):
        return [{"name": "apply_selection", "args": {"action": "invertSelection"}}]
    if re.search(r"\bselect\s+all\b", ql):
        return [{"name": "apply_selection", "args": {"action": "selectAll"}}]
    if re.search(r"\b(clear|remove|reset)\s+(all\s+|the\s+)?grouping\b|\bungroup\b", ql):
        return [{"name": "apply_grouping", "args": {"action": "clearGrouping"}}]
    if re.search(r"\bexpand\s+all\b", ql):
        return [{"name": "apply_grouping", "args": {"action": "expandAll"}}]
    if re.search(r"\bcollapse\s+all\b", ql):
        return [{"name": "apply_grouping", "args": {"action": "collapseAll"}}]

    m = re.search(r"\bgroup\s+by\s+([\w\s]+?)\s*$", ql)
    if m:
        col = aliases.resolve_column(m.group(1))
        if col:
            return [{"name": "apply_grouping", "args": {"action": "groupBy", "groupByField": col}}]

    m = re.search(rf"\b(?:sort|order)\s+(?:by\s+)?([\w\s]+?)(?:\s+({_DESC_WORDS}|{_ASC_WORDS}))?\s*$", ql)
    if m:
        col = aliases.resolve_column(m.group(1))
        if col:
            direction = "desc" if m.group(2) and re.fullmatch(_DESC_WORDS, m.group(2)) else "asc"
            return [{"name": "apply_sort", "args": {"fieldName": col, "direction": direction}}]
    return []


# ---------------------------------------------------------------------------
# Verb reconciliation
# ---------------------------------------------------------------------------

def reconcile_with_verbs(utterance: str, resolved: List[Tuple[str, Dict[str, Any]]]) -> List[Tuple[str, Dict[str, Any]]]:
    """Rewrite filter <-> selectWhere calls that contradict the verb the user used."""
    intent = classify_verbs(utterance)
    if intent not in ("filter", "selection"):
        return resolved

    out: List[Tuple[str, Dict[str, Any]]] = []
    for name, output in resolved:
        payload = {k: v for k, v in output.items() if k != "message"}
        if intent == "selection" and name == "apply_filter":
            name, output = "apply_selection", execute_tool(
                "apply_selection", {"action": "selectWhere", "criteria": payload}
            )
            logging.info(json.dumps({"event": "verb_reconciled", "to": "selection"}))
        elif intent == "filter" and name == "apply_selection" and payload.get("action") == "selectWhere":
            name, output = "apply_filter", execute_tool("apply_filter", payload["criteria"])
            logging.info(json.dumps({"event": "verb_reconciled", "to": "filter"}))
        out.append((name, output))
    return out


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _default_client() -> Optional[ToolCallingClient]:
    if not config.GEMINI_API_KEY:
        return None
    return ToolCallingClient(LLMSettings.from_config())


def generate_operations(utterance: str, client: Optional[ToolCallingClient] = None) -> OperationsResult:
    """Turn one utterance into validated operations. Never raises for LLM failures."""
    text = (utterance or "").strip()
    if not text:
        return OperationsResult(success=False, text=NO_ACTION_MESSAGE)

    client = client or _default_client()
    calls: List[Dict[str, Any]] = []
    source = "llm"
    if client is not None:
        try:
            calls = client.generate_tool_calls(text)
        except RuntimeError as e:
            logging.warning(json.dumps({"event": "llm_unavailable", "detail": str(e)[:200]}))
            calls = []

    if not calls and config.HEURISTIC_FALLBACK_ENABLED:
        calls = heuristic_tool_calls(text)
        source = "heuristic"

    # No tool clears filters, so this one is always recognised locally
    clear_first = is_clear_filters_request(text)

    if not calls and not clear_first:
        return OperationsResult(success=False, text=NOT_UNDERSTOOD_MESSAGE, source="none")

    resolved: List[Tuple[str, Dict[str, Any]]] = []
    errors: List[str] = []
    for call in calls:
        name, args = call.get("name"), call.get("args") or {}
        try:
            resolved.append((name, execute_tool(name, args)))
        except OperationValidationError as e:
            errors.append(str(e))
            logging.info(json.dumps({"event": "tool_call_rejected", "tool": name, "detail": str(e)[:200]}))

    if not resolved and not clear_first:
        return OperationsResult(success=False, text=errors[0] if errors else NOT_UNDERSTOOD_MESSAGE, source=source)

    if config.VERB_RECONCILIATION_ENABLED:
        resolved = reconcile_with_verbs(text, resolved)

    operations = [ClearFiltersOperation()] if clear_first else []
    messages = [CLEAR_FILTERS_MESSAGE] if clear_first else []
    operations += [tool_result_to_operation(name, output) for name, output in resolved]
    messages += [output["message"] for _, output in resolved]

    logging.info(json.dumps({
        "event": "operations_generated",
        "source": source,
        "count": len(operations),
        "rejected": len(errors),
    }))
    return OperationsResult(success=True, operations=operations, messages=messages, text="; ".join(messages), source=source)
