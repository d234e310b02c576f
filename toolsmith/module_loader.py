import asyncio
import functools
import importlib.util
import inspect
from types import ModuleType
from typing import Any, Callable, Dict


def load_module_from_path(module_name: str, file_path: str) -> ModuleType:
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module {module_name} from {file_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def accepts(func: Callable, name: str) -> bool:
    try:
        params = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return False
    return name in params or any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())


async def run_callable(func: Callable, *args: Any, **kwargs: Any) -> Any:
    """Await coroutine functions; run sync ones in a worker thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)

    loop = asyncio.get_running_loop()
    # Sync callables stay off the event loop thread.
    result = await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
    if inspect.isawaitable(result):
        return await result
    return result


async def run_tool(func: Callable, arguments: Dict[str, Any]) -> Any:
    return await run_callable(func, **arguments)
