import io
from datetime import datetime, timezone

import pytest
from PIL import Image

from office_lunch.services.ledger import Actor, LedgerEngine
from office_lunch.services.records import MenuItem
from office_lunch.services.store import MENU_KEY, Collection, MemoryStore

ADMIN = Actor("Admin", is_admin=True)


class FakeClock:
    """Settable clock shared by the store (createdAt) and the engine (deadline)."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def at(self, hour: int, minute: int) -> None:
        self.now = self.now.replace(hour=hour, minute=minute)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def engine(store: MemoryStore, clock: FakeClock) -> LedgerEngine:
    return LedgerEngine(store, admin_passcode="8888", clock=clock, clock_interval=0)


async def seed_menu(
    store: MemoryStore,
    items: list[MenuItem],
    deadline: str = "",
) -> None:
    await store.put(
        Collection.MENUS,
        MENU_KEY,
        {
            "restaurant": {"name": "Corner Noodle House", "phone": "02-1234", "address": "12 Market St"},
            "items": [i.to_dict() for i in items],
            "imageUrl": "",
            "orderDeadline": deadline,
        },
    )


LUNCH_ITEMS = [
    MenuItem(id="1", name="Fried Rice", price=90),
    MenuItem(id="2", name="Beef Noodle Soup", price=150),
    MenuItem(id="3", name="Bento", price=100),
]


def make_image(width: int, height: int, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 120, 40)).save(buffer, format=fmt)
    return buffer.getvalue()
