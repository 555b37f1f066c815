"""Order edit lifecycle: statuses, change types and status derivation.

An order edit's status is never stored. It is derived from which lifecycle
timestamps are set, checked in a fixed order where later checks win:

    requested_at → declined_at → confirmed_at → canceled_at

With none set the edit is CREATED. Transitions are one-way:

    CREATED ──request──▶ REQUESTED ──confirm──▶ CONFIRMED
                              └────decline───▶ DECLINED
    CREATED | REQUESTED ──cancel──▶ CANCELED
"""

from enum import Enum


class OrderEditStatus(str, Enum):
    CREATED = "created"
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELED = "canceled"


class OrderItemChangeType(str, Enum):
    ITEM_ADD = "item_add"
    ITEM_UPDATE = "item_update"
    ITEM_REMOVE = "item_remove"


TERMINAL_STATUSES = frozenset(
    {OrderEditStatus.CONFIRMED, OrderEditStatus.DECLINED, OrderEditStatus.CANCELED}
)


class Events:
    CREATED = "order-edit.created"
    UPDATED = "order-edit.updated"
    DECLINED = "order-edit.declined"
    REQUESTED = "order-edit.requested"
    CANCELED = "order-edit.canceled"
    CONFIRMED = "order-edit.confirmed"


def derive_status(requested_at=None, declined_at=None, confirmed_at=None, canceled_at=None) -> OrderEditStatus:
    """Derive the status from the lifecycle timestamps.

    A later check overrides an earlier one, so a canceled timestamp wins
    over everything else.
    """
    status = OrderEditStatus.CREATED
    if requested_at:
        status = OrderEditStatus.REQUESTED
    if declined_at:
        status = OrderEditStatus.DECLINED
    if confirmed_at:
        status = OrderEditStatus.CONFIRMED
    if canceled_at:
        status = OrderEditStatus.CANCELED
    return status


def is_active(status: OrderEditStatus) -> bool:
    return status not in TERMINAL_STATUSES
