"""
Derived Views

Pure functions over the latest store snapshots. Nothing here reads the
store or mutates anything; live views call build_dashboard() again after
every notification instead of patching previous results.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, tzinfo
from typing import Iterable, Optional

from office_lunch.services.records import Menu, MenuItem, Order, UserAccount

logger = logging.getLogger(__name__)

DEADLINE_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
UNKNOWN_DAY = "Unknown date"


def parse_deadline(value: Optional[str]) -> Optional[time]:
    """
    Parse an "HH:MM" deadline.

    Returns:
        time, or None when unset or malformed
    """
    if not value:
        return None
    match = DEADLINE_PATTERN.match(value.strip())
    if not match:
        logger.warning(f"Ignoring malformed order deadline {value!r}")
        return None
    return time(int(match.group(1)), int(match.group(2)))


def is_ordering_closed(order_deadline: Optional[str], now: datetime) -> bool:
    """True once `now` is past today's deadline. No deadline means never closed."""
    deadline = parse_deadline(order_deadline)
    if deadline is None:
        return False
    cutoff = now.replace(
        hour=deadline.hour, minute=deadline.minute, second=0, microsecond=0
    )
    return now > cutoff


def filtered_items(items: Iterable[MenuItem], search_term: str = "") -> list[MenuItem]:
    """Case-insensitive substring match on item name, menu order preserved."""
    if not search_term:
        return list(items)
    needle = search_term.casefold()
    return [item for item in items if needle in item.name.casefold()]


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def today_orders(orders: Iterable[Order], now: datetime) -> list[Order]:
    """Orders created since local midnight, newest first."""
    midnight = start_of_day(now)
    todays = [o for o in orders if o.created_at is not None and o.created_at >= midnight]
    return sorted(todays, key=lambda o: o.created_at, reverse=True)


def day_label(created_at: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    """Calendar-day label such as "10/19 (Mon)"."""
    if created_at is None:
        return UNKNOWN_DAY
    local = created_at.astimezone(tz)
    return f"{local.month}/{local.day} ({local.strftime('%a')})"


@dataclass
class HistoryGroup:
    date: str
    orders: list[Order] = field(default_factory=list)
    total: int = 0


def grouped_history(
    orders: Iterable[Order],
    user_name: str,
    tz: Optional[tzinfo] = None,
) -> list[HistoryGroup]:
    """
    All of one user's orders grouped by local calendar day.

    Group order is not part of the contract; in practice it follows the
    order stream (newest first).
    """
    groups: dict[str, HistoryGroup] = {}
    for order in orders:
        if order.user_name != user_name:
            continue
        label = day_label(order.created_at, tz)
        group = groups.setdefault(label, HistoryGroup(date=label))
        group.orders.append(order)
        group.total += order.price
    return list(groups.values())


def total_debt(users: Iterable[UserAccount]) -> int:
    """Sum of all balances; overshooting settlements make it negative."""
    return sum(u.balance for u in users)


def user_balance(users: Iterable[UserAccount], name: str) -> int:
    return next((u.balance for u in users if u.name == name), 0)


@dataclass
class DashboardState:
    """Everything one client renders, recomputed from snapshots."""
    user_name: str
    menu: Menu
    items: list[MenuItem]
    today_orders: list[Order]
    history: list[HistoryGroup]
    users: list[UserAccount]
    my_balance: int
    total_debt: int
    is_closed: bool
    computed_at: datetime


def build_dashboard(
    menu: Menu,
    users: list[UserAccount],
    orders: list[Order],
    user_name: str,
    now: datetime,
    search_term: str = "",
) -> DashboardState:
    return DashboardState(
        user_name=user_name,
        menu=menu,
        items=filtered_items(menu.items, search_term),
        today_orders=today_orders(orders, now),
        history=grouped_history(orders, user_name, now.tzinfo),
        users=users,
        my_balance=user_balance(users, user_name),
        total_debt=total_debt(users),
        is_closed=is_ordering_closed(menu.order_deadline, now),
        computed_at=now,
    )
