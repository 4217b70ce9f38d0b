"""Service modules"""
from .keeper import Keeper
from .orchestrator import RepayOrchestrator
from .planner import RepayPlan, plan_repay

__all__ = ["Keeper", "RepayOrchestrator", "RepayPlan", "plan_repay"]
