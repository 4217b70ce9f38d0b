"""Protocol interfaces for the deleveraging service."""
from .exchange import Exchange
from .flash_loan_receiver import FlashLoanReceiver
from .lending_pool import LendingPool
from .notifier import Notifier
from .price_oracle import PriceOracle
from .token_bank import TokenBank

__all__ = [
    "Exchange",
    "FlashLoanReceiver",
    "LendingPool",
    "Notifier",
    "PriceOracle",
    "TokenBank",
]
