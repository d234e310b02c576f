"""
memory_store.py - Confidence-weighted memory of past runs.

The store itself is thin: it validates and logs, and hands similarity search to
a pluggable backend (SqliteVectorBackend by default). Records are never deleted
here; only their confidence changes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol


@dataclass
class MemoryRecord:
    input: str
    response: str
    confidence: float
    used_capabilities: List[str] = field(default_factory=list)
    id: Optional[int] = None
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "input": self.input,
            "response": self.response,
            "confidence": self.confidence,
            "used_capabilities": list(self.used_capabilities),
            "ts": self.ts,
        }


@dataclass
class SimilarMemory:
    record: MemoryRecord
    similarity: float


class SimilarityBackend(Protocol):
    async def store(self, record: MemoryRecord) -> int: ...

    async def update_confidence(self, record_id: int, confidence: float) -> None: ...

    async def find_similar(self, text: str, threshold: float, limit: int = 10) -> List[SimilarMemory]: ...


class MemoryStore:
    def __init__(self, backend: SimilarityBackend):
        self.backend = backend

    async def find_similar(self, text: str, threshold: float, limit: int = 10) -> List[SimilarMemory]:
        matches = await self.backend.find_similar(text, threshold, limit=limit)
        matches = [m for m in matches if m.similarity >= threshold]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        if matches:
            print(f"[Memory] {len(matches)} memories above {threshold:.2f} for {text[:60]!r}", flush=True)
        return matches

    async def store_memory(
        self,
        input_text: str,
        response: str,
        confidence: float,
        used_capabilities: Optional[Iterable[str]] = None,
    ) -> MemoryRecord:
        record = MemoryRecord(
            input=input_text,
            response=response,
            confidence=max(0.0, min(1.0, float(confidence))),
            used_capabilities=sorted(set(used_capabilities or [])),
        )
        record.id = await self.backend.store(record)
        print(f"[Memory] Stored memory #{record.id} (confidence={record.confidence:.2f})", flush=True)
        return record

    async def update_memory(self, record: MemoryRecord, confidence: float) -> MemoryRecord:
        confidence = max(0.0, min(1.0, float(confidence)))
        if record.id is not None:
            await self.backend.update_confidence(record.id, confidence)
        record.confidence = confidence
        return record
