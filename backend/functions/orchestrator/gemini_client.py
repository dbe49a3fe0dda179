from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, List

import google.generativeai as genai

import config
from schemas import FIELD_NAMES, NUMERIC_FIELDS
from tools import TOOLS_SPEC
from verbs import VERB_RULES

# Known-good for tool calls
FALLBACK_MODEL = "gemini-1.5-flash"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LLMSettings:
    api_key: str
    model_name: str
    max_tokens: int = 1024
    temperature: float = 0.0
    model_override: str = ""

    @classmethod
    def from_config(cls) -> "LLMSettings":
        return cls(
            api_key=config.GEMINI_API_KEY,
            model_name=config.GEMINI_MODEL_NAME,
            max_tokens=config.GEMINI_MAX_TOKENS,
            temperature=config.CLASSIFIER_TEMPERATURE,
            model_override=config.CLASSIFIER_MODEL_OVERRIDE,
        )

    def candidate_models(self) -> List[str]:
        out: List[str] = []
        for name in (self.model_name, self.model_override, FALLBACK_MODEL):
            if name and name not in out:
                out.append(name)
        return out


# ---------------------------------------------------------------------------
# Schema conversion
# ---------------------------------------------------------------------------

_TYPE_MAP = {
    "object": "OBJECT",
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
}


def _to_gemini_schema(js: dict | None) -> dict:
    """JSON schema -> Gemini Schema casing (upper-case types, no examples)."""
    if not isinstance(js, dict):
        return {"type": "OBJECT"}
    t = str(js.get("type", "object")).lower()
    out: dict = {"type": _TYPE_MAP.get(t, "OBJECT")}
    if isinstance(js.get("properties"), dict):
        out["properties"] = {k: _to_gemini_schema(v) for k, v in js["properties"].items()}
    if "items" in js:
        out["items"] = _to_gemini_schema(js.get("items"))
    if "enum" in js:
        out["enum"] = list(js.get("enum") or [])
    if "required" in js:
        out["required"] = list(js.get("required") or [])
    if "description" in js:
        out["description"] = js["description"]
    return out


def function_declarations(tool_spec: List[dict]) -> List[dict]:
    out = []
    for t in tool_spec or []:
        name = t.get("name")
        if not name:
            continue
        fn = {
            "name": name,
            "description": t.get("description", ""),
            "parameters": _to_gemini_schema(t.get("parameters", {"type": "object"})),
        }
        examples = t.get("examples")
        if examples and isinstance(examples, list):
            fn["description"] += f"\n\nExample queries: {', '.join(examples[:5])}"
        out.append(fn)
    return out


def _to_plain(value: Any) -> Any:
    """Proto map/repeated composites -> plain dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (str, bytes)):
        return value
    if hasattr(value, "__iter__"):
        return [_to_plain(v) for v in value]
    return value


def build_system_prompt() -> str:
    numeric = ", ".join(f for f in FIELD_NAMES if f in NUMERIC_FIELDS)
    return (
        "You translate requests about a real-estate table into tool calls.\n\n"
        f"FIELDS: {', '.join(FIELD_NAMES)}. Numeric fields: {numeric}.\n"
        "averagePricePerM2 is the average price per square meter in euros.\n\n"
        "RULES:\n"
        "- Call one tool per requested action, in the order the user asked for them.\n"
        "- Questions about totals, averages, counts, extremes, rankings or percentiles use analyze_data.\n"
        "- Default analyze_data scope is 'filtered'; use 'selected' only when the user refers to selected rows.\n"
        "- Only call tools for requests about the table.\n\n"
        f"{VERB_RULES}"
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ToolCallingClient:
    """Gemini function-calling client. Settings are injected, never read globally."""

    def __init__(self, settings: LLMSettings):
        self.settings = settings
        self._configured = False

    def _ensure_configured(self) -> None:
        if not self._configured:
            if not self.settings.api_key:
                raise RuntimeError("GEMINI_API_KEY not set")
            genai.configure(api_key=self.settings.api_key)
            self._configured = True

    def _build_model_with_tools(self, model_name: str, declarations: List[dict]):
        """Instantiate a GenerativeModel with tools using types when available."""
        system_instruction = build_system_prompt()
        types = getattr(genai, "types", None)
        Tool = getattr(types, "Tool", None)
        FunctionDeclaration = getattr(types, "FunctionDeclaration", None)
        if Tool and FunctionDeclaration and declarations:
            try:
                tool_obj = Tool(function_declarations=[
                    FunctionDeclaration(
                        name=fd["name"],
                        description=fd.get("description", ""),
                        parameters=fd.get("parameters", {"type": "OBJECT"}),
                    )
                    for fd in declarations
                ])
                return genai.GenerativeModel(model_name, tools=[tool_obj], system_instruction=system_instruction)
            except (TypeError, ValueError) as e:
                logging.info(json.dumps({"event": "typed_tools_unavailable", "detail": str(e)[:200]}))
        return genai.GenerativeModel(
            model_name,
            tools=[{"function_declarations": declarations}],
            system_instruction=system_instruction,
        )

    def _generate(self, mdl, utterance: str):
        generation_config = {
            "max_output_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
        }
        try:
            return mdl.generate_content(
                utterance,
                generation_config=generation_config,
                tool_config={"function_calling_config": {"mode": "AUTO"}},
            )
        except (TypeError, ValueError):
            # Older SDKs take the mode as a bare string
            return mdl.generate_content(
                utterance,
                generation_config=generation_config,
                tool_config={"function_calling_config": "AUTO"},
            )

    @staticmethod
    def _function_calls(resp) -> List[Dict[str, Any]]:
        calls: List[Dict[str, Any]] = []
        for c in getattr(resp, "candidates", None) or []:
            content = getattr(c, "content", None)
            parts = getattr(content, "parts", None) if content else None
            for p in parts or []:
                fc = getattr(p, "function_call", None) or getattr(p, "functionCall", None)
                if fc and getattr(fc, "name", None):
                    calls.append({"name": str(fc.name), "args": _to_plain(getattr(fc, "args", None) or {})})
            if calls:
                break
        return calls

    def _try_once(self, model_name: str, utterance: str, declarations: List[dict]) -> List[Dict[str, Any]] | None:
        try:
            mdl = self._build_model_with_tools(model_name, declarations)
            resp = self._generate(mdl, utterance)
        except Exception as e:  # SDK and transport errors vary by version
            logging.warning(json.dumps({
                "event": "tool_call_error",
                "model": model_name,
                "detail": str(e)[:200],
            }))
            return None
        calls = self._function_calls(resp)
        if config.LOG_TOOL_CALLS:
            logging.info(json.dumps({"event": "tool_calls", "model": model_name, "calls": calls}, default=str))
        return calls or None

    def generate_tool_calls(self, utterance: str, tool_spec: List[dict] | None = None) -> List[Dict[str, Any]]:
        """Map one utterance to an ordered list of {"name", "args"} tool calls.

        Tries the configured model, the override, then a known-good fallback.
        Returns [] when no model produced a call.
        """
        self._ensure_configured()
        declarations = function_declarations(tool_spec if tool_spec is not None else TOOLS_SPEC)
        for model_name in self.settings.candidate_models():
            calls = self._try_once(model_name, utterance, declarations)
            if calls:
                return calls
        return []
