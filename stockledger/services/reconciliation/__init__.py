"""Reconciliation services"""

from .calculator import ReconciliationCalculator, calculate_consumption, calculate_manday_cost

__all__ = ["ReconciliationCalculator", "calculate_consumption", "calculate_manday_cost"]
