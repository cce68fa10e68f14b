"""Cost accounting for AI calls."""

from .cost import CostMonitor, CostRecord, calculate_cost

__all__ = ["CostMonitor", "CostRecord", "calculate_cost"]
