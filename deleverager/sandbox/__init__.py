"""In-memory lending pool, exchange and market wiring."""
from .exchange import SandboxExchange
from .lending_pool import SandboxLendingPool
from .market import Market, build_market

__all__ = ["Market", "SandboxExchange", "SandboxLendingPool", "build_market"]
