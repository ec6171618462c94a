"""Order status enumeration and CRM display-name table.

Local order statuses are integers in the order store; the CRM shows
localized names. StatusTable is the single place where the two meet,
in both directions.
"""

from __future__ import annotations

from enum import IntEnum


class OrderStatus(IntEnum):
    PENDING = 0
    NEW = 1
    PAYED = 2
    PREPARE_FOR_SHIPPING = 3
    CANCELED = 7


# Statuses the push orchestrator picks up.
PUSHABLE_STATUSES: tuple[OrderStatus, ...] = (
    OrderStatus.NEW,
    OrderStatus.PAYED,
    OrderStatus.PREPARE_FOR_SHIPPING,
)

UNKNOWN_STATUS_ID = -1


class StatusTable:
    """Bidirectional mapping between OrderStatus and CRM display names.

    Args:
        names: Display name per status. Names must be unique.
    """

    def __init__(self, names: dict[OrderStatus, str]) -> None:
        self._by_status = dict(names)
        self._by_name: dict[str, OrderStatus] = {}
        for status, name in names.items():
            if name in self._by_name:
                raise ValueError(f"duplicate status name: {name!r}")
            self._by_name[name] = status

    def name_for(self, status: OrderStatus | int) -> str:
        """Return the display name, or "" for statuses the CRM does not show."""
        try:
            return self._by_status.get(OrderStatus(status), "")
        except ValueError:
            return ""

    def status_for(self, name: str) -> OrderStatus | None:
        return self._by_name.get(name.strip())

    def id_for(self, name: str) -> int:
        """Reverse lookup by display name; -1 when the name is unknown."""
        status = self.status_for(name)
        return int(status) if status is not None else UNKNOWN_STATUS_ID

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._by_name


CONSUMER_STATUSES = StatusTable(
    {
        OrderStatus.NEW: "Нове",
        OrderStatus.PAYED: "Оплачено, формування ТТН",
        OrderStatus.PREPARE_FOR_SHIPPING: "Перевірка та збір",
    }
)

B2B_STATUSES = StatusTable(
    {
        OrderStatus.NEW: "Нове замовлення",
        OrderStatus.PAYED: "Оплачено формування ТТН",
        OrderStatus.PREPARE_FOR_SHIPPING: "Передано на збір",
    }
)
