from __future__ import annotations

import asyncio
import hashlib
import os
import re
from typing import Any, Dict, List, Optional

import aiohttp
import numpy as np

_TOKEN_RE = re.compile(r"[a-z0-9_]+")


def _embedding_cfg(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (config or {}).get("embeddings", {}) if config else {}


def model_name(config: Optional[Dict[str, Any]] = None) -> str:
    cfg = _embedding_cfg(config)
    if not cfg.get("enabled", False) or os.getenv("PYTEST_CURRENT_TEST"):
        return f"hash-{int(cfg.get('hash_dimensions', 512))}"
    return cfg.get("model") or "qwen3-embedding:0.6b-fp16"


def hash_embed(text: str, dimensions: int = 512) -> List[float]:
    """Deterministic hashed bag-of-words vector (unigrams + bigrams), L2-normalized."""
    vec = np.zeros(dimensions, dtype=np.float32)
    tokens = _TOKEN_RE.findall((text or "").lower())
    features = tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]
    for feature in features:
        digest = hashlib.md5(feature.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "little") % dimensions
        sign = 1.0 if digest[4] & 1 else -1.0
        vec[bucket] += sign
    norm = float(np.linalg.norm(vec))
    if norm > 0:
        vec /= norm
    return vec.tolist()


async def embed_text_async(text: str, config: Optional[Dict[str, Any]] = None) -> Optional[List[float]]:
    """
    Embedding from an Ollama-style /api/embeddings endpoint, or the local hashed
    vector when remote embeddings are disabled (always the case under pytest).
    Returns None only for empty text or a failing remote endpoint.
    """
    if not text:
        return None
    cfg = _embedding_cfg(config)
    if not cfg.get("enabled", False) or os.getenv("PYTEST_CURRENT_TEST"):
        return hash_embed(text, int(cfg.get("hash_dimensions", 512)))

    base_url = (cfg.get("base_url") or "http://localhost:11434").rstrip("/")
    model = cfg.get("model") or "qwen3-embedding:0.6b-fp16"
    timeout_sec = float(cfg.get("timeout_sec", 30))
    endpoint = f"{base_url}/api/embeddings"
    payload = {"model": model, "prompt": text}

    timeout = aiohttp.ClientTimeout(total=timeout_sec, connect=timeout_sec, sock_connect=timeout_sec, sock_read=timeout_sec)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(endpoint, json=payload) as resp:
                if resp.status != 200:
                    print(f"[Memory] Embedding endpoint returned {resp.status}", flush=True)
                    return None
                data = await resp.json()
                emb = data.get("embedding")
                return emb if isinstance(emb, list) else None
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        print(f"[Memory] Embedding request failed: {exc}", flush=True)
        return None
