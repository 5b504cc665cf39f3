"""
Abstract target CMS interface - the upsert resolver only talks to this.
Implementations raise UpstreamError / UpstreamTimeoutError on failure so the
retry executor can classify them.
"""
from abc import ABC, abstractmethod
from typing import Optional


class TargetCMS(ABC):
    """Abstract base class for target content systems."""

    @abstractmethod
    async def create_item(self, token: str, collection_id: str, field_data: dict) -> dict:
        """
        Create a live item.
        Returns the item as sent back by the CMS: {"id": str, "fieldData": {...}, ...}
        """
        ...

    @abstractmethod
    async def update_item(
        self, token: str, collection_id: str, item_id: str, field_data: dict
    ) -> dict:
        """Update a live item by id. Returns the updated item."""
        ...

    @abstractmethod
    async def get_item(self, token: str, collection_id: str, item_id: str) -> Optional[dict]:
        """Fetch one item, None if it does not exist."""
        ...

    @abstractmethod
    async def delete_item(self, token: str, collection_id: str, item_id: str) -> None:
        ...
