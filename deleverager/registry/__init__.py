"""Operator whitelist and per-user policy bookkeeping."""
from .policy_store import PolicyStore
from .whitelist import Whitelist

__all__ = ["PolicyStore", "Whitelist"]
