"""Collateral-funded deleveraging engine and keeper."""
__version__ = "0.1.0"
