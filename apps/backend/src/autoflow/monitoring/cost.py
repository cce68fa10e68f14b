"""Token cost accounting with advisory budget checks."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# USD per million tokens: (input, output)
PRICE_TABLE: dict[str, tuple[float, float]] = {
    "claude-3-5-sonnet": (3.0, 15.0),
    "claude-3-7-sonnet": (15.0, 75.0),
}
DEFAULT_PRICED_MODEL = "claude-3-5-sonnet"

COST_PRECISION = 8
APPROACHING_BUDGET_RATIO = 0.8
HIGH_TIER_CALL_COST = 0.50
SIMPLE_SHARE_THRESHOLD = 0.6
SIMPLE_CONTEXT_NODE_LIMIT = 6

SAVINGS_FACTORS = {
    "reduce-context": 0.30,
    "prefer-low-tier": 0.60,
    "reduce-nodes": 0.20,
}


def price_key(model: str) -> str:
    """Map a model identifier onto an entry of the price table."""
    if model in PRICE_TABLE:
        return model
    if "3-7" in model or "opus" in model:
        return "claude-3-7-sonnet"
    return DEFAULT_PRICED_MODEL


def rates_for(model: str) -> tuple[float, float]:
    return PRICE_TABLE[price_key(model)]


class CostRecord(BaseModel):
    model: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    complexity: Optional[str] = None
    job_id: Optional[str] = None
    archetype: Optional[str] = None
    node_count: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class BudgetStatus(BaseModel):
    within_budget: bool
    warnings: list[str] = []
    current_cost: float
    daily_total: float
    daily_budget: float
    single_call_limit: float


class Recommendation(BaseModel):
    type: str
    message: str
    action: str


def calculate_cost(model: str, input_tokens: int, output_tokens: int, **context: Any) -> CostRecord:
    """Cost of one call, linear in both token counts."""
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("token counts must be non-negative")
    input_rate, output_rate = rates_for(model)
    input_cost = input_tokens / 1_000_000 * input_rate
    output_cost = output_tokens / 1_000_000 * output_rate
    return CostRecord(
        model=price_key(model),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost=round(input_cost, COST_PRECISION),
        output_cost=round(output_cost, COST_PRECISION),
        total_cost=round(input_cost + output_cost, COST_PRECISION),
        **context,
    )


class CostMonitor:
    """Owns a bounded, append-only log of cost records.

    The log is a ring buffer: once ``capacity`` records exist the oldest is
    dropped. Budget checks only ever warn; the call being accounted for has
    already happened.
    """

    def __init__(self, daily_budget: float = 10.0, single_call_limit: float = 1.0, capacity: int = 100):
        self.daily_budget = daily_budget
        self.single_call_limit = single_call_limit
        self._log: deque[CostRecord] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> CostMonitor:
        return cls(
            daily_budget=settings.daily_cost_budget,
            single_call_limit=settings.single_call_limit,
            capacity=settings.cost_log_capacity,
        )

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int, **context: Any) -> CostRecord:
        return calculate_cost(model, input_tokens, output_tokens, **context)

    def record(self, record: CostRecord) -> BudgetStatus:
        with self._lock:
            self._log.append(record)
        status = self.check_budget(record)
        logger.info(
            "Cost: %s in=%d out=%d $%.5f (job=%s, tier=%s)",
            record.model,
            record.input_tokens,
            record.output_tokens,
            record.total_cost,
            record.job_id,
            record.complexity,
        )
        for warning in status.warnings:
            logger.warning("Budget: %s", warning)
        return status

    def records(self) -> list[CostRecord]:
        with self._lock:
            return list(self._log)

    def clear(self) -> None:
        with self._lock:
            self._log.clear()

    def check_budget(self, record: CostRecord) -> BudgetStatus:
        """Compare ``record`` (logged or hypothetical) against the ceilings."""
        daily_total = sum(r.total_cost for r in self.records())
        warnings: list[str] = []
        if record.total_cost > self.single_call_limit:
            warnings.append(
                f"Single call cost ${record.total_cost:.5f} exceeds limit ${self.single_call_limit:.2f}"
            )
        if daily_total > self.daily_budget:
            warnings.append(f"Daily budget ${self.daily_budget:.2f} exceeded; current ${daily_total:.5f}")
        elif daily_total > self.daily_budget * APPROACHING_BUDGET_RATIO:
            warnings.append(f"Daily usage ${daily_total:.5f} approaching budget ${self.daily_budget:.2f}")
        return BudgetStatus(
            within_budget=daily_total <= self.daily_budget and record.total_cost <= self.single_call_limit,
            warnings=warnings,
            current_cost=record.total_cost,
            daily_total=round(daily_total, COST_PRECISION),
            daily_budget=self.daily_budget,
            single_call_limit=self.single_call_limit,
        )

    def get_cost_summary(self) -> dict[str, Any]:
        records = self.records()
        if not records:
            return {
                "totalCalls": 0,
                "totalCost": 0.0,
                "averageCost": 0.0,
                "modelBreakdown": {},
                "complexityBreakdown": {},
                "timeRange": None,
            }

        total = sum(r.total_cost for r in records)
        by_model: dict[str, dict[str, float]] = {}
        by_tier: dict[str, dict[str, float]] = {}
        for r in records:
            for bucket, key in ((by_model, r.model), (by_tier, r.complexity or "unknown")):
                entry = bucket.setdefault(key, {"calls": 0, "cost": 0.0})
                entry["calls"] += 1
                entry["cost"] = round(entry["cost"] + r.total_cost, COST_PRECISION)

        return {
            "totalCalls": len(records),
            "totalCost": round(total, COST_PRECISION),
            "averageCost": round(total / len(records), COST_PRECISION),
            "modelBreakdown": by_model,
            "complexityBreakdown": by_tier,
            "timeRange": {
                "start": records[0].timestamp.isoformat(),
                "end": records[-1].timestamp.isoformat(),
            },
        }

    def get_optimization_recommendations(
        self, complexity: Optional[str] = None, node_count: Optional[int] = None
    ) -> dict[str, Any]:
        """Hints for a workflow shape, drawn from the recent log."""
        summary = self.get_cost_summary()
        recommendations: list[Recommendation] = []

        high_tier = summary["modelBreakdown"].get("claude-3-7-sonnet")
        if high_tier:
            average = high_tier["cost"] / high_tier["calls"]
            if average > HIGH_TIER_CALL_COST:
                recommendations.append(
                    Recommendation(
                        type="cost-reduction",
                        message=f"High-tier model averaging ${average:.3f} per call; consider reducing context size",
                        action="reduce-context",
                    )
                )

        if complexity == "simple" and node_count is not None and node_count > SIMPLE_CONTEXT_NODE_LIMIT:
            recommendations.append(
                Recommendation(
                    type="context-optimization",
                    message=f"Simple workflow using {node_count} documentation nodes; reduce to 4-6",
                    action="reduce-nodes",
                )
            )

        # High-tier calls made for plans that scored simple
        records = self.records()
        simple_high = [r for r in records if r.complexity == "simple" and r.model == "claude-3-7-sonnet"]
        high = [r for r in records if r.model == "claude-3-7-sonnet"]
        if high and len(simple_high) / len(high) > SIMPLE_SHARE_THRESHOLD:
            share = round(len(simple_high) / len(high) * 100)
            recommendations.append(
                Recommendation(
                    type="model-optimization",
                    message=f"{share}% of high-tier calls served simple plans; reuse the low-cost tier for them",
                    action="prefer-low-tier",
                )
            )

        savings = sum(summary["totalCost"] * SAVINGS_FACTORS[r.action] for r in recommendations)
        return {
            "recommendations": [r.model_dump() for r in recommendations],
            "potentialSavings": round(savings, COST_PRECISION),
        }

    def export(self) -> dict[str, Any]:
        return {
            "summary": self.get_cost_summary(),
            "recommendations": self.get_optimization_recommendations(),
            "rawData": [r.model_dump(mode="json") for r in self.records()],
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }
