"""Abstract CRM adapter interface.

The push orchestrator and B2B deal builder depend only on this ABC, so
tests substitute an AsyncMock and alternative CRMs can be added without
touching the pipelines.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.ordersync.crm.schemas import Contact, Deal, Good, OrderedItem, SalesOrder


class CRMAdapter(ABC):
    """Write operations the sync pipelines need from a CRM.

    All methods return CRM record ids as strings.
    """

    @abstractmethod
    async def create_contact(self, contact: Contact) -> str:
        """Create a contact, or return the id of the existing duplicate."""
        ...

    @abstractmethod
    async def create_sales_order(self, order: SalesOrder) -> str:
        """Create a sales order with its embedded (first) batch of items."""
        ...

    @abstractmethod
    async def append_order_items(self, order_id: str, items: list[OrderedItem]) -> str:
        """Append one chunk of at most 100 items to an existing sales order."""
        ...

    @abstractmethod
    async def create_deal(self, deal: Deal) -> str:
        """Create a B2B deal with its embedded (first) batch of goods."""
        ...

    @abstractmethod
    async def append_deal_goods(self, deal_id: str, goods: list[Good]) -> str:
        """Append one chunk of at most 100 goods to an existing deal."""
        ...

    @abstractmethod
    async def refresh_token(self) -> None:
        """Refresh the API access token ahead of expiry."""
        ...
