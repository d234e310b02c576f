import json
from typing import Any, Dict, List, Optional

from toolsmith.errors import ToolsmithError


def _registry(api: Any):
    registry = getattr(api, "registry", None)
    if registry is None:
        raise RuntimeError("registry skills need a capability registry on the api object")
    return registry


def _failure(exc: ToolsmithError) -> Dict[str, Any]:
    return {"success": False, **exc.to_dict()}


def list_tools(tags: Optional[List[str]] = None, api: Any = None) -> List[Dict[str, Any]]:
    """List registered tools with their version, tags and signature."""
    return [
        {
            "name": unit.name,
            "version": unit.version,
            "active": unit.active,
            "tags": list(unit.tags),
            "signature": unit.signature,
            "description": unit.description,
        }
        for unit in _registry(api).list_units(tags)
    ]


async def add_tool(
    name: str,
    source: str,
    schema: Optional[Dict[str, Any]] = None,
    tags: Optional[List[str]] = None,
    api: Any = None,
) -> Dict[str, Any]:
    """Register a new tool from Python source exposing execute(params, api)."""
    try:
        added = await _registry(api).add(name, source, schema or {}, tags or [])
    except ToolsmithError as exc:
        return _failure(exc)
    if not added:
        return {"success": False, "error": f"Tool {name} already exists"}
    return {"success": True, "name": name}


async def update_tool(
    name: str,
    source: Optional[str] = None,
    schema: Optional[Dict[str, Any]] = None,
    tags: Optional[List[str]] = None,
    active: Optional[bool] = None,
    api: Any = None,
) -> Dict[str, Any]:
    """Update a tool's source, schema, tags or active flag."""
    try:
        unit = await _registry(api).update(name, source=source, schema=schema, tags=tags, active=active)
    except ToolsmithError as exc:
        return _failure(exc)
    return {"success": True, "name": name, "version": unit.version}


async def delete_tool(name: str, api: Any = None) -> Dict[str, Any]:
    """Remove a tool and its metrics."""
    removed = await _registry(api).remove(name)
    return {"success": removed, "name": name}


def get_tool_metadata(name: str, api: Any = None) -> Dict[str, Any]:
    unit = _registry(api).get(name)
    if unit is None:
        return {"success": False, "error": f"Tool not found: {name}"}
    return {"success": True, "metadata": dict(unit.metadata)}


async def update_tool_metadata(name: str, metadata: Dict[str, Any], api: Any = None) -> Dict[str, Any]:
    try:
        updated = await _registry(api).update_metadata(name, metadata)
    except ToolsmithError as exc:
        return _failure(exc)
    return {"success": True, "metadata": updated}


def get_tool_performance(name: str, api: Any = None) -> Dict[str, Any]:
    """Usage, error-rate and timing metrics for one tool."""
    try:
        metrics = _registry(api).get_metrics(name)
    except ToolsmithError as exc:
        return _failure(exc)
    return {"success": True, "metrics": json.loads(json.dumps(metrics.to_dict(), default=str))}


def get_all_performance_metrics(api: Any = None) -> Dict[str, Any]:
    return _registry(api).generate_report("json")


async def run_maintenance(api: Any = None) -> Dict[str, Any]:
    """Review auto-generated tools, then test and improve tools without a passing test."""
    return await _registry(api).perform_maintenance()


async def analyze_and_create_tool(script: str, task_description: str = "", api: Any = None) -> Dict[str, Any]:
    """Turn a successful script into a reusable tool when it is not already covered."""
    unit = await _registry(api).create_from_script(script, task_description)
    if unit is None:
        return {"success": False, "created": None}
    return {"success": True, "created": unit.name}


async def predict_likely_tools(request: str, api: Any = None) -> Dict[str, Any]:
    prediction = await _registry(api).predict_likely_capabilities(request)
    return prediction.model_dump()


def get_tool_history(name: str, api: Any = None) -> Dict[str, Any]:
    try:
        return {"success": True, "versions": _registry(api).get_history(name)}
    except ToolsmithError as exc:
        return _failure(exc)


async def rollback_tool(name: str, version: str, api: Any = None) -> Dict[str, Any]:
    """Restore a tool to an earlier version."""
    try:
        unit = await _registry(api).rollback(name, version)
    except ToolsmithError as exc:
        return _failure(exc)
    return {"success": True, "name": name, "version": unit.version}


def generate_tool_report(fmt: str = "text", api: Any = None) -> Any:
    return _registry(api).generate_report(fmt)
