import asyncio
import json
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class ChatResponse:
    content: str
    model: str
    success: bool = True
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


def resolve_provider_config(config: Dict[str, Any], provider_name: str = None) -> Tuple[str, Dict[str, Any]]:
    """
    Resolves the configuration for a specific provider from config["providers"].
    The JSON key 'type' is exposed as 'provider_type'.
    """
    if not provider_name:
        base_provider = config.get("provider", {}) or {}
        provider_name = base_provider.get("name", "anthropic")

    providers = config.get("providers", {}) or {}
    if provider_name in providers:
        merged = dict(providers[provider_name])
        merged["name"] = provider_name
        if "type" in merged:
            merged["provider_type"] = merged["type"]
        return provider_name, merged

    return provider_name, {"name": provider_name}


class AsyncAIProvider:
    """Async chat client for Anthropic, OpenAI-compatible and Ollama Cloud endpoints.

    chat() never raises for transport problems; failures come back as
    ChatResponse(success=False) with the error text in content.
    """

    def __init__(self, name: str, config: Dict[str, Any]):
        self.name = name
        self.config = config or {}
        self.provider_type = self.config.get("provider_type", "openai_compatible")
        self.api_key = self._get_api_key()
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_api_key(self) -> Optional[str]:
        if self.config.get("api_key_env"):
            return os.getenv(self.config["api_key_env"])
        return self.config.get("api_key")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout_total = float(self.config.get("timeout_sec", 60))
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=timeout_total,
                    connect=timeout_total,
                    sock_connect=timeout_total,
                    sock_read=timeout_total,
                )
            )
        return self._session

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        started = time.perf_counter()
        timeout_sec = float(self.config.get("timeout_sec", 60))
        ptype = self.provider_type.lower()

        if ptype == "anthropic":
            coro = self._chat_anthropic(messages, model, temperature, max_tokens)
        elif ptype == "ollama_cloud":
            coro = self._chat_ollama_cloud(messages, model, temperature)
        else:
            ptype = "openai_compatible"
            coro = self._chat_openai_compatible(messages, model, temperature, max_tokens)

        try:
            resp = await asyncio.wait_for(coro, timeout=timeout_sec)
        except asyncio.TimeoutError:
            resp = ChatResponse(content=f"network timeout after {timeout_sec:.0f}s", model=model, success=False)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            resp = ChatResponse(content=f"Provider Error: {exc}", model=model, success=False)

        elapsed = time.perf_counter() - started
        extra = f" err={resp.content[:120]!r}" if not resp.success else ""
        print(f"[LLM] {self.name}/{model} ({ptype}) done in {elapsed:.2f}s (ok={resp.success}){extra}", flush=True)
        return resp

    async def _chat_anthropic(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        session = await self._get_session()
        base_url = (self.config.get("base_url") or "https://api.anthropic.com/v1").rstrip("/")
        endpoint = f"{base_url}/messages"
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": self.config.get("api_version", "2023-06-01"),
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key

        system_parts = [m.content for m in messages if m.role == "system"]
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or int(self.config.get("max_tokens", 4096)),
            "temperature": temperature,
            "messages": [
                {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)

        try:
            async with session.post(endpoint, headers=headers, json=payload) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    return ChatResponse(content=f"API Error ({resp.status}): {error_text}", model=model, success=False)
                data = await resp.json()
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientConnectorError as exc:
            return ChatResponse(content=f"connection refused: {exc}", model=model, success=False)
        except Exception as exc:
            return ChatResponse(content=f"Connection Error: {exc}", model=model, success=False)

        # Messages API returns content blocks; the text block is the answer.
        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")
        return ChatResponse(
            content=text,
            model=data.get("model", model),
            success=True,
            finish_reason=data.get("stop_reason"),
            usage=data.get("usage"),
        )

    async def _chat_openai_compatible(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        session = await self._get_session()
        base_url = (self.config.get("base_url") or "https://api.openai.com/v1").rstrip("/")
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        endpoint = f"{base_url}/chat/completions"
        try:
            async with session.post(endpoint, headers=headers, json=payload) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    return ChatResponse(content=f"API Error ({resp.status}): {error_text}", model=model, success=False)
                data = await resp.json()
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientConnectorError as exc:
            return ChatResponse(content=f"connection refused: {exc}", model=model, success=False)
        except Exception as exc:
            return ChatResponse(content=f"Connection Error: {exc}", model=model, success=False)

        choices = data.get("choices", [])
        if not choices:
            return ChatResponse(content="Empty response from API", model=model, success=False)
        message = choices[0].get("message", {}) or {}
        content = message.get("content") or message.get("reasoning_content") or choices[0].get("text") or ""
        return ChatResponse(
            content=content,
            model=data.get("model", model),
            success=True,
            finish_reason=choices[0].get("finish_reason"),
            usage=data.get("usage"),
        )

    async def _chat_ollama_cloud(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float,
    ) -> ChatResponse:
        """Chat with an Ollama REST API at {base_url}/api/chat (non-streaming)."""
        session = await self._get_session()
        base_url = (self.config.get("base_url") or "https://ollama.com").rstrip("/")
        endpoint = f"{base_url}/api/chat"
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {"temperature": temperature},
        }
        try:
            async with session.post(endpoint, headers=headers, json=payload) as resp:
                raw = await resp.text()
                if resp.status != 200:
                    return ChatResponse(
                        content=f"Ollama Cloud Error ({resp.status}): {raw[:2000]}",
                        model=model,
                        success=False,
                    )
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientConnectorError as exc:
            return ChatResponse(content=f"connection refused: {exc}", model=model, success=False)
        except Exception as exc:
            return ChatResponse(content=f"Ollama Cloud Error: {exc}", model=model, success=False)

        # Normally a single JSON object; some servers still answer NDJSON.
        try:
            data = json.loads(raw) if raw.strip() else {}
        except ValueError:
            data = None
        if isinstance(data, dict):
            msg = data.get("message") or {}
            if isinstance(msg, dict) and msg.get("content") is not None:
                return ChatResponse(content=str(msg.get("content") or ""), model=model, success=True)
            return ChatResponse(content=str(data.get("response") or ""), model=model, success=True)

        parts: List[str] = []
        for line in raw.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                evt = json.loads(line)
            except ValueError:
                continue
            if isinstance(evt, dict):
                msg = evt.get("message") or {}
                if isinstance(msg, dict) and msg.get("content"):
                    parts.append(str(msg["content"]))
                elif evt.get("response"):
                    parts.append(str(evt["response"]))
        return ChatResponse(content="".join(parts), model=model, success=True)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
