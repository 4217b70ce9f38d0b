"""Whitelist of operators allowed to trigger repays."""
from __future__ import annotations

import logging

from ..errors import NotAuthorized

logger = logging.getLogger(__name__)


class Whitelist:
    """Administrator-managed set of operator addresses."""

    def __init__(self, admin: str) -> None:
        self._admin = admin
        # dict keeps insertion order for members()
        self._members: dict[str, None] = {}

    @property
    def admin(self) -> str:
        return self._admin

    def _only_admin(self, caller: str) -> None:
        if caller != self._admin:
            raise NotAuthorized(f"{caller} is not the whitelist administrator")

    def add(self, caller: str, address: str) -> bool:
        """Add ``address``; False if it was already present."""
        self._only_admin(caller)
        if address in self._members:
            return False
        self._members[address] = None
        logger.info("Operator %s whitelisted", address)
        return True

    def remove(self, caller: str, address: str) -> bool:
        """Remove ``address``; False if it was absent."""
        self._only_admin(caller)
        if address not in self._members:
            return False
        del self._members[address]
        logger.info("Operator %s removed from whitelist", address)
        return True

    def contains(self, address: str) -> bool:
        return address in self._members

    def members(self) -> tuple[str, ...]:
        return tuple(self._members)

    def __contains__(self, address: object) -> bool:
        return address in self._members

    def __len__(self) -> int:
        return len(self._members)
