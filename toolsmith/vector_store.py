from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from toolsmith import embedding_client
from toolsmith.memory_store import MemoryRecord, SimilarMemory

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    input TEXT NOT NULL,
    response TEXT NOT NULL,
    confidence REAL NOT NULL,
    used_tools TEXT NOT NULL DEFAULT '[]',
    ts REAL NOT NULL,
    updated_ts REAL
);
CREATE TABLE IF NOT EXISTS vectors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_type TEXT NOT NULL,
    item_id TEXT NOT NULL,
    embedding TEXT NOT NULL,
    model TEXT NOT NULL,
    dimensions INTEGER NOT NULL,
    ts REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_vectors_model_ts ON vectors (model, ts);
"""


class SqliteVectorBackend:
    """Memory records + embeddings in sqlite, cosine similarity with numpy."""

    def __init__(self, db_path: Path, config: Optional[Dict[str, Any]] = None, scan_limit: int = 500):
        self.db_path = Path(db_path)
        self.config = config or {}
        self.scan_limit = scan_limit
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=10, check_same_thread=False)

    def _insert(self, record: MemoryRecord, vector: Optional[List[float]], model: str) -> int:
        with closing(self._connect()) as conn:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO memories (input, response, confidence, used_tools, ts) VALUES (?, ?, ?, ?, ?)",
                (record.input, record.response, record.confidence, json.dumps(record.used_capabilities), record.ts),
            )
            record_id = int(cur.lastrowid)
            if vector is not None:
                cur.execute(
                    "INSERT INTO vectors (item_type, item_id, embedding, model, dimensions, ts) VALUES (?, ?, ?, ?, ?, ?)",
                    ("memory", str(record_id), json.dumps(vector), model, len(vector), time.time()),
                )
            conn.commit()
        return record_id

    async def store(self, record: MemoryRecord) -> int:
        vector = await embedding_client.embed_text_async(record.input, config=self.config)
        model = embedding_client.model_name(self.config)
        return await asyncio.to_thread(self._insert, record, vector, model)

    def _update(self, record_id: int, confidence: float) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "UPDATE memories SET confidence = ?, updated_ts = ? WHERE id = ?",
                (confidence, time.time(), record_id),
            )
            conn.commit()

    async def update_confidence(self, record_id: int, confidence: float) -> None:
        await asyncio.to_thread(self._update, record_id, confidence)

    def _scan(self, query_vec: List[float], model: str, threshold: float, limit: int) -> List[SimilarMemory]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """
                SELECT m.id, m.input, m.response, m.confidence, m.used_tools, m.ts, v.embedding
                FROM vectors v JOIN memories m ON m.id = CAST(v.item_id AS INTEGER)
                WHERE v.item_type = 'memory' AND v.model = ?
                ORDER BY v.ts DESC LIMIT ?
                """,
                (model, self.scan_limit),
            ).fetchall()
        if not rows:
            return []

        q = np.array(query_vec, dtype=np.float32)
        q_norm = np.linalg.norm(q)
        matches: List[SimilarMemory] = []
        for rec_id, inp, resp, conf, used, ts, emb_json in rows:
            try:
                emb = np.array(json.loads(emb_json), dtype=np.float32)
            except ValueError:
                continue
            if emb.shape != q.shape:
                continue
            denom = (np.linalg.norm(emb) * q_norm) or 1.0
            score = float(np.dot(q, emb) / denom)
            if score < threshold:
                continue
            record = MemoryRecord(
                id=rec_id,
                input=inp,
                response=resp,
                confidence=float(conf),
                used_capabilities=json.loads(used or "[]"),
                ts=ts,
            )
            matches.append(SimilarMemory(record=record, similarity=min(1.0, score)))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    async def find_similar(self, text: str, threshold: float, limit: int = 10) -> List[SimilarMemory]:
        vector = await embedding_client.embed_text_async(text, config=self.config)
        if vector is None:
            return []
        model = embedding_client.model_name(self.config)
        return await asyncio.to_thread(self._scan, vector, model, threshold, limit)
