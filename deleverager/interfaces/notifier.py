"""Notifier protocol — where the keeper reports repays and failures."""
from typing import Protocol


class Notifier(Protocol):
    """A channel with an alert stream and a (possibly muted) log stream."""

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
