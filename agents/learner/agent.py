"""
Pattern Learner

Deterministic replay of metrics history:
- Structural change patterns (tables, columns, indexes, drift, recurring issues)
- Growth, performance and maintenance requirements
- Structural predictions from high-confidence patterns
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from config.settings import LearningConfig
from framework.agent_framework import BaseAgent, EventType
from framework.models import FutureRequirement, MetricsSnapshot, SchemaPattern

from .patterns import learn_patterns
from .predictions import (
    growth_requirement,
    maintenance_requirement,
    performance_requirement,
    structural_requirements,
)

logger = logging.getLogger("dbautopilot.learner")


class PatternLearner(BaseAgent):
    """Pattern Learner: same history in, same patterns and requirements out."""

    def __init__(self, config: Optional[LearningConfig] = None):
        super().__init__(
            name="PatternLearner",
            description="Learns recurring structural patterns and predicts future schema and maintenance needs",
        )
        self.config = config or LearningConfig()

    def register_tools(self) -> None:
        self.register_tool("learn_from_history", self.learn_from_history,
                           "Recompute patterns and requirements from metrics history")

    def learn(self, history: list[MetricsSnapshot]) -> tuple[list[SchemaPattern], list[FutureRequirement]]:
        patterns = learn_patterns(history, self.config)
        requirements = [
            req for req in (
                growth_requirement(history, self.config),
                performance_requirement(history, self.config),
                maintenance_requirement(history, self.config),
            ) if req is not None
        ]
        requirements += structural_requirements(patterns, self.config)
        return patterns, requirements

    def learning_progress(self, history: list[MetricsSnapshot], previous: float = 0.0) -> float:
        """Share of the target snapshot count seen so far. Never decreases."""
        progress = min(100, round(100 * len(history) / self.config.learning_target_snapshots))
        return max(previous, progress)

    async def learn_from_history(self, history: list[MetricsSnapshot]):
        patterns, requirements = await asyncio.to_thread(self.learn, history)
        for pattern in patterns:
            self.emit_event(EventType.PATTERN_LEARNED, {
                "pattern_id": pattern.id,
                "frequency": pattern.frequency,
                "confidence": pattern.confidence,
            })
        for req in requirements:
            self.emit_event(EventType.PREDICTION_GENERATED, {
                "type": req.type,
                "target": req.target,
                "confidence": req.confidence,
            })
        logger.info(
            f"[learning] {len(history)} snapshots -> {len(patterns)} patterns, "
            f"{len(requirements)} requirements"
        )
        return patterns, requirements
