from __future__ import annotations

import asyncio
from typing import Dict


class CancellationToken:
    """Cooperative cancellation signal checked between suspension points."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class CancellationRegistry:
    """Cancellation tokens keyed by asset id."""

    def __init__(self) -> None:
        self._tokens: Dict[str, CancellationToken] = {}

    def token_for(self, asset_id: str) -> CancellationToken:
        token = self._tokens.get(asset_id)
        if token is None:
            token = self._tokens[asset_id] = CancellationToken()
        return token

    def cancel(self, asset_id: str) -> None:
        self.token_for(asset_id).cancel()

    def discard(self, asset_id: str) -> None:
        self._tokens.pop(asset_id, None)


__all__ = ["CancellationToken", "CancellationRegistry"]
