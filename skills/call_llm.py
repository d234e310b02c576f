from typing import Any, Optional

from toolsmith.llm_provider import ChatMessage
from toolsmith.utils import extract_json

DEFAULT_SYSTEM_PROMPT = "You are a precise assistant. Answer the request directly."


async def call_llm(
    prompt: str,
    system_prompt: Optional[str] = None,
    response_format: Optional[Any] = None,
    result_var: Optional[str] = None,
    api: Any = None,
) -> Any:
    """Ask the language model a question and return its reply, parsed as JSON when a response format is given.

    response_format is an example value or JSON schema the reply should follow.
    result_var, when set, also stores the value in the run store under that key.
    """
    if api is None or getattr(api, "model", None) is None:
        raise RuntimeError("call_llm needs a model gateway on the api object")

    system = system_prompt or DEFAULT_SYSTEM_PROMPT
    if response_format is not None:
        hint = response_format if isinstance(response_format, str) else repr(response_format)
        system = f"{system}\n\nResponse Format: {hint}\n***OUTPUT RAW JSON ONLY***"

    reply = await api.model.complete(
        [ChatMessage(role="system", content=system), ChatMessage(role="user", content=prompt)],
        slot="planner",
    )

    value: Any = reply
    if response_format is not None:
        parsed = extract_json(reply)
        if parsed is None:
            api.emit("error", f"call_llm reply did not match the requested format: {reply[:200]}")
        else:
            value = parsed

    if result_var:
        api.store[result_var] = value
    return value
