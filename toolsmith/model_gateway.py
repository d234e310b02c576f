"""
model_gateway.py - The one door to the generative model.

complete() returns reply text for a message list routed through an LLM slot.
complete_structured() appends a response-format hint (a pydantic model's JSON
schema) to the system instruction and validates the reply against it. A reply
that does not conform is handed back as raw text and reported on the event bus.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaMismatch

from toolsmith.errors import ModelCallFailed
from toolsmith.events import EventBus
from toolsmith.llm_provider import AsyncAIProvider, ChatMessage
from toolsmith.llm_slots import resolve_llm_slot
from toolsmith.utils import extract_json

T = TypeVar("T", bound=BaseModel)
MessageLike = Union[ChatMessage, Dict[str, str]]


def format_hint(response_model: Type[BaseModel]) -> str:
    schema = json.dumps(response_model.model_json_schema(), ensure_ascii=False)
    return (
        "\n\nResponse Format: reply with a single JSON value that matches this JSON schema:\n"
        f"{schema}\n***OUTPUT RAW JSON ONLY***"
    )


def _as_messages(messages: Sequence[MessageLike]) -> List[ChatMessage]:
    out: List[ChatMessage] = []
    for m in messages:
        if isinstance(m, ChatMessage):
            out.append(m)
        else:
            out.append(ChatMessage(role=m.get("role", "user"), content=str(m.get("content", ""))))
    return out


class ModelGateway:
    def __init__(
        self,
        config: Dict[str, Any],
        events: Optional[EventBus] = None,
        provider_factory: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
        temperature: float = 0.2,
    ):
        self.config = config or {}
        self.events = events
        self.temperature = temperature
        self._provider_factory = provider_factory or AsyncAIProvider
        self._brains: Dict[str, Tuple[Any, str]] = {}

    def _brain_for_slot(self, slot: str) -> Tuple[Any, str]:
        if slot not in self._brains:
            p_name, resolved_cfg, p_model = resolve_llm_slot(self.config, slot)
            self._brains[slot] = (self._provider_factory(p_name, resolved_cfg), p_model)
        return self._brains[slot]

    async def complete(
        self,
        messages: Sequence[MessageLike],
        slot: str = "registry",
        max_tokens: Optional[int] = None,
    ) -> str:
        provider, model = self._brain_for_slot(slot)
        response = await provider.chat(_as_messages(messages), model, temperature=self.temperature, max_tokens=max_tokens)
        if not response.success:
            raise ModelCallFailed(response.content, context={"slot": slot, "model": model})
        return response.content or ""

    async def complete_structured(
        self,
        messages: Sequence[MessageLike],
        response_model: Type[T],
        slot: str = "registry",
        events: Optional[EventBus] = None,
    ) -> Union[T, str]:
        msgs = _as_messages(messages)
        hint = format_hint(response_model)
        if msgs and msgs[0].role == "system":
            msgs[0] = ChatMessage(role="system", content=msgs[0].content + hint)
        else:
            msgs.insert(0, ChatMessage(role="system", content=hint.strip()))

        text = await self.complete(msgs, slot=slot)
        try:
            return response_model.model_validate(extract_json(text))
        except SchemaMismatch as exc:
            bus = events or self.events
            if bus is not None:
                bus.emit("error", f"Response did not match {response_model.__name__}: {exc.error_count()} error(s)")
            print(f"[LLM] {slot} reply did not match {response_model.__name__}; returning raw text", flush=True)
            return text

    async def close(self) -> None:
        for provider, _ in self._brains.values():
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
        self._brains.clear()
