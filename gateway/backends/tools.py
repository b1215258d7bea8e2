"""
Tool definitions — normalization, sanitization and provider formats.

Requests carry tools as opaque dicts in any of three shapes:

    generic    {"name", "description", "parameters"}
    OpenAI     {"type": "function", "function": {"name", "description", "parameters"}}
    Anthropic  {"name", "description", "input_schema"}

tool_spec() reads all three into a ToolSpec; to_openai_tool() and
to_anthropic_tool() write the provider shape back out.

prepare_tools() is the strict path used by the multi-provider adapter:
names are rewritten to satisfy the most restrictive provider
(^[a-zA-Z_][a-zA-Z0-9_.:-]{0,63}$), duplicates after rewriting are dropped
(first one wins), and malformed JSON schemas are repaired. Every change is
logged as a warning and returned as a repair record so callers can see it.
tool_name_map() maps sanitized names back to the caller's names.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

TOOL_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_.:-]{0,63}$")
MAX_TOOL_NAME_LENGTH = 64

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.:-]")
_NON_WORD_CHARS = re.compile(r"[^a-zA-Z0-9_]")


# ---------------------------------------------------------------------------
# Tool Spec
# ---------------------------------------------------------------------------

@dataclass
class ToolSpec:
    """Provider-agnostic tool definition."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


def tool_spec(raw: dict[str, Any]) -> ToolSpec:
    """Read a tool dict in generic, OpenAI or Anthropic shape."""
    body = raw.get("function") if isinstance(raw.get("function"), dict) else raw

    name = body.get("name")
    schema = body.get("parameters") or body.get("input_schema") or body.get("inputSchema")

    return ToolSpec(
        name=name if isinstance(name, str) and name else "tool",
        description=str(body.get("description") or ""),
        parameters=dict(schema) if isinstance(schema, dict) else {"type": "object", "properties": {}},
    )


def to_openai_tool(raw: dict[str, Any]) -> dict[str, Any]:
    """OpenAI function-calling format. Native OpenAI tools pass through."""
    if raw.get("type") == "function" and isinstance(raw.get("function"), dict):
        return raw
    spec = tool_spec(raw)
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }


def to_anthropic_tool(raw: dict[str, Any]) -> dict[str, Any]:
    """Anthropic tool format. Native Anthropic tools pass through."""
    if "input_schema" in raw and "function" not in raw:
        return raw
    spec = tool_spec(raw)
    return {
        "name": spec.name,
        "description": spec.description,
        "input_schema": spec.parameters,
    }


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def sanitize_tool_name(name: str) -> str:
    """Rewrite `name` so it matches TOOL_NAME_PATTERN."""
    sanitized = _INVALID_NAME_CHARS.sub("_", name)
    if not re.match(r"^[a-zA-Z_]", sanitized):
        sanitized = f"_{sanitized}"
    sanitized = sanitized[:MAX_TOOL_NAME_LENGTH]

    if TOOL_NAME_PATTERN.match(sanitized):
        return sanitized

    # Last resort: keep word characters only
    stripped = _NON_WORD_CHARS.sub("", name)
    if stripped and not re.match(r"^[a-zA-Z_]", stripped):
        stripped = f"_{stripped}"
    stripped = stripped[:MAX_TOOL_NAME_LENGTH]
    return stripped if TOOL_NAME_PATTERN.match(stripped) else "tool"


def repair_schema(schema: Any, path: str = "$") -> tuple[dict[str, Any], list[str]]:
    """
    Return (repaired_schema, notes). The input is never mutated.

    - non-dict schemas become {"type": "object", "properties": {}}
    - arrays get a dict `items` (default {"type": "string"})
    - objects get a dict `properties` and a `required` list holding only
      names that exist in `properties`
    Nested properties and items are repaired recursively.
    """
    notes: list[str] = []

    if not isinstance(schema, dict):
        notes.append(f"{path}: schema was not an object")
        return {"type": "object", "properties": {}}, notes

    fixed = copy.deepcopy(schema)
    schema_type = fixed.get("type")

    if schema_type == "array":
        items = fixed.get("items")
        if not isinstance(items, dict):
            notes.append(f"{path}: array missing items schema")
            fixed["items"] = {"type": "string"}
        else:
            fixed["items"], item_notes = repair_schema(items, f"{path}.items")
            notes.extend(item_notes)

    if schema_type == "object" or "properties" in fixed:
        properties = fixed.get("properties")
        if not isinstance(properties, dict):
            if properties is not None:
                notes.append(f"{path}: properties was not an object")
            properties = {}
        repaired_props = {}
        for prop_name, prop_schema in properties.items():
            repaired_props[prop_name], prop_notes = repair_schema(
                prop_schema, f"{path}.properties.{prop_name}"
            )
            notes.extend(prop_notes)
        fixed["properties"] = repaired_props

        required = fixed.get("required")
        if required is not None:
            if not isinstance(required, list):
                notes.append(f"{path}: required was not a list")
                required = []
            kept = [r for r in required if isinstance(r, str) and r in repaired_props]
            if len(kept) != len(required):
                dropped = [r for r in required if r not in kept]
                notes.append(f"{path}: dropped unknown required {dropped}")
            fixed["required"] = kept

    return fixed, notes


def prepare_tools(
    tools: Optional[list[dict[str, Any]]],
) -> tuple[list[ToolSpec], list[dict[str, Any]]]:
    """
    Sanitize names, drop duplicates and repair schemas.

    Returns (tool_specs, repairs). Each repair is a dict with `tool`,
    `action` ("renamed" | "dropped_duplicate" | "schema_repaired") and
    `detail`.
    """
    specs: list[ToolSpec] = []
    repairs: list[dict[str, Any]] = []
    seen: set[str] = set()

    for raw in tools or []:
        if not isinstance(raw, dict):
            continue
        spec = tool_spec(raw)
        original = spec.name
        name = sanitize_tool_name(original)

        if name != original:
            logger.warning("tool_name_sanitized", extra={"original": original, "sanitized": name})
            repairs.append({"tool": original, "action": "renamed", "detail": name})

        if name in seen:
            logger.warning("tool_duplicate_dropped", extra={"tool": name, "original": original})
            repairs.append({"tool": original, "action": "dropped_duplicate", "detail": name})
            continue
        seen.add(name)

        parameters, notes = repair_schema(spec.parameters)
        if notes:
            logger.warning("tool_schema_repaired", extra={"tool": name, "repairs": notes})
            repairs.append({"tool": name, "action": "schema_repaired", "detail": notes})

        specs.append(ToolSpec(name=name, description=spec.description, parameters=parameters))

    return specs, repairs


def tool_name_map(tools: Optional[list[dict[str, Any]]]) -> dict[str, str]:
    """Sanitized name -> the caller's name, for every tool prepare_tools() keeps."""
    names: dict[str, str] = {}
    for raw in tools or []:
        if not isinstance(raw, dict):
            continue
        original = tool_spec(raw).name
        names.setdefault(sanitize_tool_name(original), original)
    return names
