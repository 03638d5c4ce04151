"""Escalation budget and cost accounting."""

from qa_engine.cost.ledger import CostLedgerTracker
from qa_engine.cost.governor import CostGovernor, period_end_for, period_start_for

__all__ = [
    "CostGovernor",
    "CostLedgerTracker",
    "period_end_for",
    "period_start_for",
]
