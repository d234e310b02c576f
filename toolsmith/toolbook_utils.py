#!/usr/bin/env python3
import inspect
import types
from typing import Any, Dict, Iterable, List, Union, get_args, get_origin

_JSON_TO_HINT = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "array": "list",
    "object": "dict",
}


def _schema_for_annotation(annotation: Any) -> Dict[str, Any]:
    """Convert Python type annotation to JSON schema type."""
    if annotation is inspect.Parameter.empty or annotation is Any:
        return {"type": "string"}

    origin = get_origin(annotation)
    args = get_args(annotation)

    union_type = getattr(types, "UnionType", None)
    if origin is Union or (union_type and origin is union_type):
        non_null = [arg for arg in args if arg is not type(None)]
        if len(non_null) == 1:
            return _schema_for_annotation(non_null[0])
        return {"type": "object"}

    if origin is list or annotation is list:
        item_schema = _schema_for_annotation(args[0]) if args else {}
        schema: Dict[str, Any] = {"type": "array"}
        if item_schema:
            schema["items"] = item_schema
        return schema

    if origin is dict or annotation is dict:
        return {"type": "object"}
    if annotation is str:
        return {"type": "string"}
    if annotation is int:
        return {"type": "integer"}
    if annotation is float:
        return {"type": "number"}
    if annotation is bool:
        return {"type": "boolean"}
    if origin is tuple:
        return {"type": "array"}
    return {"type": "object"}


def build_tool_schema(name: str, func, skip: Iterable[str] = ("api",)) -> Dict[str, Any]:
    """Schema for a skill function: description, parameters, and a readable signature."""
    signature = inspect.signature(func)
    description = (inspect.getdoc(func) or "").split("\n\n")[0].replace("\n", " ")
    type_hints = getattr(func, "__annotations__", {}) or {}
    skipped = set(skip)

    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param in signature.parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        if param.name in skipped:
            continue
        annotation = type_hints.get(param.name, param.annotation)
        prop_schema = _schema_for_annotation(annotation)
        if param.default is not inspect.Parameter.empty:
            if param.default is not None:
                prop_schema["default"] = param.default
        else:
            required.append(param.name)
        properties[param.name] = prop_schema

    parameters: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    schema = {"name": name, "description": description, "parameters": parameters}
    schema["signature"] = signature_from_schema(name, schema)
    return schema


def signature_from_schema(name: str, schema: Dict[str, Any]) -> str:
    if schema.get("signature"):
        return str(schema["signature"])
    params = (schema.get("parameters") or {}).get("properties") or {}
    required = set((schema.get("parameters") or {}).get("required") or [])
    parts = []
    for pname, pschema in params.items():
        hint = _JSON_TO_HINT.get((pschema or {}).get("type", ""), "Any")
        parts.append(f"{pname}: {hint}" if pname in required else f"{pname}: {hint} = None")
    return f"{name}({', '.join(parts)})"


def missing_required(schema: Dict[str, Any], params: Dict[str, Any]) -> List[str]:
    required = (schema.get("parameters") or {}).get("required") or []
    return [p for p in required if p not in (params or {})]
