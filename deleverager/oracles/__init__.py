"""Price oracles."""
from .pyth import PythOracle
from .static import StaticOracle

__all__ = ["PythOracle", "StaticOracle"]
