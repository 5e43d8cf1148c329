"""Owner directory: confirms that a requester exists before work is accepted."""

from __future__ import annotations

from typing import Iterable, Protocol


class OwnerDirectory(Protocol):
    async def exists(self, owner_id: str) -> bool: ...


class StaticOwnerDirectory:
    """Owner directory backed by a fixed set of ids.

    With no ids configured every non-empty owner id is accepted, which suits
    deployments where the web layer has already authenticated the caller.
    """

    def __init__(self, known_ids: Iterable[str] | None = None) -> None:
        self._known = {str(owner_id) for owner_id in known_ids or ()}

    async def exists(self, owner_id: str) -> bool:
        if not owner_id:
            return False
        if not self._known:
            return True
        return str(owner_id) in self._known
