from datetime import datetime, timedelta, timezone

import pytest

from office_lunch.services.records import Menu, MenuItem, Order, UserAccount
from office_lunch.services.views import (
    UNKNOWN_DAY,
    build_dashboard,
    day_label,
    filtered_items,
    grouped_history,
    is_ordering_closed,
    parse_deadline,
    today_orders,
    total_debt,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

ITEMS = [
    MenuItem(id="1", name="Fried Rice", price=90),
    MenuItem(id="2", name="Beef Noodle Soup", price=150),
    MenuItem(id="3", name="Dumplings", price=80),
]


def make_order(order_id: str, user: str, price: int, created_at) -> Order:
    return Order(
        id=order_id,
        user_name=user,
        item_id="1",
        item_name="Fried Rice",
        unit_price=price,
        quantity=1,
        note="",
        price=price,
        created_at=created_at,
    )


@pytest.mark.parametrize(
    "term,expected",
    (
        ("rice", ["Fried Rice"]),
        ("RICE", ["Fried Rice"]),
        ("", ["Fried Rice", "Beef Noodle Soup", "Dumplings"]),
        ("pizza", []),
    ),
)
def test_filtered_items(term: str, expected: list[str]) -> None:
    assert [i.name for i in filtered_items(ITEMS, term)] == expected


@pytest.mark.parametrize(
    "deadline,hour,minute,closed",
    (
        ("13:00", 13, 0, False),
        ("13:00", 13, 1, True),
        ("13:00", 9, 0, False),
        ("", 23, 59, False),
        (None, 23, 59, False),
        ("1pm", 23, 59, False),
    ),
)
def test_is_ordering_closed(deadline, hour: int, minute: int, closed: bool) -> None:
    now = NOW.replace(hour=hour, minute=minute)
    assert is_ordering_closed(deadline, now) is closed


def test_parse_deadline_accepts_single_digit_hour() -> None:
    assert parse_deadline("9:30").hour == 9
    assert parse_deadline("24:00") is None


def test_today_orders_excludes_earlier_days_and_pending_timestamps() -> None:
    orders = [
        make_order("a", "Alice", 90, NOW - timedelta(hours=2)),
        make_order("b", "Bob", 90, NOW - timedelta(days=1)),
        make_order("c", "Carol", 90, None),
        make_order("d", "Dave", 90, NOW - timedelta(minutes=5)),
    ]

    assert [o.id for o in today_orders(orders, NOW)] == ["d", "a"]


def test_day_label() -> None:
    assert day_label(datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc), timezone.utc) == "10/19 (Mon)"
    assert day_label(None) == UNKNOWN_DAY


def test_grouped_history_only_includes_user_orders() -> None:
    orders = [
        make_order("a", "Alice", 90, NOW),
        make_order("b", "Alice", 150, NOW - timedelta(hours=1)),
        make_order("c", "Bob", 80, NOW),
        make_order("d", "Alice", 40, NOW - timedelta(days=1)),
    ]

    groups = grouped_history(orders, "Alice", timezone.utc)

    totals = {g.date: g.total for g in groups}
    assert totals == {"10/19 (Mon)": 240, "10/18 (Sun)": 40}
    assert sum(len(g.orders) for g in groups) == 3


def test_total_debt_can_be_negative() -> None:
    users = [UserAccount("Alice", 100), UserAccount("Bob", -250)]
    assert total_debt(users) == -150


def test_build_dashboard() -> None:
    menu = Menu(items=ITEMS, order_deadline="11:00")
    users = [UserAccount("Alice", 90), UserAccount("Bob", 150)]
    orders = [make_order("a", "Alice", 90, NOW), make_order("b", "Bob", 150, NOW)]

    state = build_dashboard(menu, users, orders, "Alice", NOW, search_term="soup")

    assert state.my_balance == 90
    assert state.total_debt == 240
    assert state.is_closed is True
    assert [i.name for i in state.items] == ["Beef Noodle Soup"]
    assert len(state.today_orders) == 2
    assert [g.total for g in state.history] == [90]


def test_menu_from_missing_document_uses_placeholder() -> None:
    menu = Menu.from_doc(None)
    assert menu.restaurant.name == "Not set"
    assert menu.items == []


def test_menu_reads_legacy_restaurant_string() -> None:
    menu = Menu.from_doc({"restaurant": "Old Place", "items": [{"id": 5, "name": "Soup", "price": "40"}]})
    assert menu.restaurant.name == "Old Place"
    assert menu.restaurant.phone == ""
    assert menu.items[0].id == "5"
    assert menu.items[0].price == 40
