from __future__ import annotations

import math
from typing import Any, Dict, Optional


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _confidence_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    cfg = (config or {}).get("confidence", {}) if config else {}
    return {
        "retrieval_floor": float(cfg.get("retrieval_floor", 0.5)),
        "learning_rate": float(cfg.get("learning_rate", 0.1)),
        "reference_length": int(cfg.get("reference_length", 400)),
    }


class ConfidenceCalculator:
    """
    Scores how much a stored memory should be trusted.

    retrieval:  confidence * (floor + (1 - floor) * similarity)
                non-decreasing in both arguments for inputs in [0, 1].
    update:     confidence moves toward the observed similarity by learning_rate,
                so close matches boost a memory and weak ones decay it.
    boost:      a reused memory gains learning_rate * similarity of its remaining
                headroom; never lowers confidence.
    initial:    baseline scaled by how substantial the response text is.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        cfg = _confidence_config(config)
        self.retrieval_floor = _clamp(cfg["retrieval_floor"])
        self.learning_rate = _clamp(cfg["learning_rate"])
        self.reference_length = max(1, cfg["reference_length"])

    def calculate_retrieval_confidence(self, confidence: float, similarity: float) -> float:
        conf = _clamp(confidence)
        sim = _clamp(similarity)
        return _clamp(conf * (self.retrieval_floor + (1.0 - self.retrieval_floor) * sim))

    def update_confidence(self, confidence: float, similarity: float) -> float:
        conf = _clamp(confidence)
        sim = _clamp(similarity)
        return _clamp(conf + self.learning_rate * (sim - conf))

    def boost_confidence(self, confidence: float, similarity: float) -> float:
        conf = _clamp(confidence)
        sim = _clamp(similarity)
        return _clamp(conf + self.learning_rate * (1.0 - conf) * sim)

    def calculate_initial_confidence(self, baseline: float, response_text: str) -> float:
        length = len((response_text or "").strip())
        if length == 0:
            return 0.0
        substance = min(1.0, math.log1p(length) / math.log1p(self.reference_length))
        return _clamp(baseline * (0.5 + 0.5 * substance))
