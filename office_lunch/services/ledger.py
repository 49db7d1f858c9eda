"""
Ledger & Ordering Engine

State machine for today's menu, orders and the per-user debt ledger.

Every operation takes an Actor (user name + admin flag) as ambient context,
validates locally before touching the store, and reports store failures as
StoreError without retrying.

Order placement and cancellation touch two documents (the order and the
owner's balance). The store has no cross-document transaction, so:

    place:   write order  →  confirm it exists  →  increment balance
             increment failed → delete the order again
    cancel:  delete order →  confirm it is gone →  decrement balance
             decrement failed → restore the order

If a compensation step fails too, the mismatch is logged as a ledger
inconsistency (order id, user, amount) so it can be fixed by hand.
"""

import asyncio
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Awaitable, Callable, Optional

from office_lunch.core.config import get_settings
from office_lunch.core.exceptions import (
    AuthorizationError,
    OrderingClosedError,
    StoreError,
    ValidationError,
)
from office_lunch.services.ingestion import IngestedMenu
from office_lunch.services.records import (
    RESTAURANT_FIELDS,
    Menu,
    MenuItem,
    Order,
    Restaurant,
    UserAccount,
)
from office_lunch.services.store import (
    MENU_KEY,
    SERVER_TIMESTAMP,
    BaseStore,
    Collection,
    Snapshot,
    get_store,
)
from office_lunch.services.views import (
    DEADLINE_PATTERN,
    DashboardState,
    HistoryGroup,
    build_dashboard,
    grouped_history,
    is_ordering_closed,
    today_orders,
)

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Actor:
    """Who is calling: the chosen display name and whether admin mode is on."""
    user_name: str
    is_admin: bool = False


def normalize_user_name(name: Optional[str]) -> str:
    """Trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", name or "").strip()


class LedgerEngine:
    """
    Ordering and ledger operations over a synchronized store.

    Example:
        >>> engine = LedgerEngine(MemoryStore())
        >>> await engine.login("alice")
        >>> order = await engine.place_order(Actor("alice"), item_id="17", quantity=2)
        >>> await engine.cancel_order(Actor("alice"), order.id)
    """

    def __init__(
        self,
        store: BaseStore,
        admin_passcode: str = "8888",
        clock: Optional[Callable[[], datetime]] = None,
        clock_interval: float = 30.0,
    ):
        self.store = store
        self.admin_passcode = admin_passcode
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.clock_interval = clock_interval

    def now(self) -> datetime:
        return self._clock()

    # ==========================================================================
    # SESSION
    # ==========================================================================

    async def login(self, name: str) -> UserAccount:
        """
        Resolve a display name to a ledger user, creating it on first login.

        Names that differ only in case or surrounding/repeated whitespace
        resolve to the first-registered user.

        Raises:
            ValidationError: If the name is blank
        """
        display_name = normalize_user_name(name)
        if not display_name:
            raise ValidationError("name is required")

        existing = await self._find_user(display_name)
        if existing is not None:
            await self.store.put(
                Collection.USERS,
                existing.name,
                {"lastActive": SERVER_TIMESTAMP},
                merge=True,
            )
            logger.info(f"User {existing.name!r} logged in")
            return existing

        await self.store.put(
            Collection.USERS,
            display_name,
            {"name": display_name, "balance": 0, "lastActive": SERVER_TIMESTAMP},
        )
        logger.info(f"Registered new user {display_name!r}")
        return UserAccount(name=display_name)

    async def resolve_user(self, name: str) -> UserAccount:
        """
        Map any spelling of a logged-in name to the stored user.

        Raises:
            ValidationError: If nobody with that name has logged in
        """
        user = await self._find_user(normalize_user_name(name))
        if user is None:
            raise ValidationError(f"unknown user {name!r}; log in first")
        return user

    def verify_admin(self, passcode: Optional[str]) -> bool:
        """
        Check the shared admin passcode. Advisory only.

        Raises:
            AuthorizationError: "incorrect code" on mismatch
        """
        if passcode != self.admin_passcode:
            logger.warning("Rejected admin passcode")
            raise AuthorizationError("incorrect code")
        return True

    async def list_users(self) -> list[UserAccount]:
        """All users, most recently active first."""
        users = [UserAccount.from_doc(d) for d in await self.store.list(Collection.USERS)]
        return sorted(
            users,
            key=lambda u: u.last_active.timestamp() if u.last_active else 0.0,
            reverse=True,
        )

    # ==========================================================================
    # READS
    # ==========================================================================

    async def get_menu(self) -> Menu:
        return Menu.from_doc(await self.store.get(Collection.MENUS, MENU_KEY))

    async def list_orders(self) -> list[Order]:
        return [Order.from_doc(d) for d in await self.store.list(Collection.ORDERS)]

    async def today_orders(self) -> list[Order]:
        return today_orders(await self.list_orders(), self.now())

    async def history(self, user_name: str) -> list[HistoryGroup]:
        now = self.now()
        user = await self._find_user(normalize_user_name(user_name))
        owner = user.name if user is not None else user_name
        return grouped_history(await self.list_orders(), owner, now.tzinfo)

    async def is_ordering_closed(self) -> bool:
        menu = await self.get_menu()
        return is_ordering_closed(menu.order_deadline, self.now())

    # ==========================================================================
    # ORDERS
    # ==========================================================================

    async def place_order(
        self,
        actor: Actor,
        item_id: str,
        quantity: int = 1,
        note: str = "",
    ) -> Order:
        """
        Order an item from today's menu and charge it to the actor's balance.

        Raises:
            ValidationError: Bad quantity or item not on the menu
            OrderingClosedError: Past the deadline and not admin
            StoreError: The order could not be recorded consistently
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity must be a positive integer")

        menu = await self.get_menu()
        if not actor.is_admin and is_ordering_closed(menu.order_deadline, self.now()):
            logger.info(f"Order from {actor.user_name!r} rejected: past {menu.order_deadline}")
            raise OrderingClosedError(f"ordering closed at {menu.order_deadline}")

        item = menu.find_item(item_id)
        if item is None:
            raise ValidationError(f"item {item_id} is not on today's menu")
        owner = await self.resolve_user(actor.user_name)

        order = Order(
            id=uuid.uuid4().hex,
            user_name=owner.name,
            item_id=item.id,
            item_name=item.name,
            unit_price=item.price,
            quantity=quantity,
            note=(note or "").strip(),
            price=item.price * quantity,
        )
        doc = {**order.to_doc(), "createdAt": SERVER_TIMESTAMP}

        await self._write_and_confirm(
            self.store.put(Collection.ORDERS, order.id, doc),
            order.id,
            expect_exists=True,
            action="place",
            user_name=order.user_name,
            amount=order.price,
        )

        try:
            await self.store.increment(Collection.USERS, order.user_name, "balance", order.price)
        except StoreError as e:
            logger.error(f"Balance increment failed for order {order.id}; removing the order")
            await self._compensate(
                self.store.delete(Collection.ORDERS, order.id),
                order.id,
                order.user_name,
                order.price,
            )
            raise StoreError(f"order not placed: {e.message}") from e

        await self._touch(order.user_name)
        logger.info(
            f"Order {order.id}: {order.user_name} {order.item_name} x{order.quantity} = {order.price}"
        )
        return order

    async def cancel_order(self, actor: Actor, order_id: str) -> Order:
        """
        Delete an order and refund its price to the owner's balance.

        Raises:
            ValidationError: The order does not exist
            AuthorizationError: Actor is neither the owner nor admin
            StoreError: The cancellation could not be applied consistently
        """
        doc = await self.store.get(Collection.ORDERS, order_id)
        if doc is None:
            raise ValidationError(f"order {order_id} no longer exists")
        order = Order.from_doc(doc)

        if not actor.is_admin and not _same_user(order.user_name, actor.user_name):
            raise AuthorizationError("only the owner or an admin can cancel this order")

        await self._write_and_confirm(
            self.store.delete(Collection.ORDERS, order_id),
            order_id,
            expect_exists=False,
            action="cancel",
            user_name=order.user_name,
            amount=order.price,
        )

        try:
            await self.store.increment(Collection.USERS, order.user_name, "balance", -order.price)
        except StoreError as e:
            logger.error(f"Balance decrement failed for order {order_id}; restoring the order")
            await self._compensate(
                self.store.put(Collection.ORDERS, order_id, order.to_doc()),
                order_id,
                order.user_name,
                -order.price,
            )
            raise StoreError(f"order not cancelled: {e.message}") from e

        logger.info(
            f"Order {order_id} cancelled by {actor.user_name} "
            f"({order.user_name} refunded {order.price})"
        )
        return order

    async def settle_debt(
        self,
        actor: Actor,
        target_user: str,
        amount: Optional[int] = None,
    ) -> int:
        """
        Record a real-world payment by lowering a user's balance.

        Args:
            amount: Amount paid; None settles the full current balance.
                No upper bound is enforced, balances may go negative.

        Returns:
            The amount applied
        """
        self._require_admin(actor, "settle debts")

        user = await self._find_user(normalize_user_name(target_user))
        if user is not None:
            target_user = user.name

        if amount is None:
            doc = await self.store.get(Collection.USERS, target_user)
            if doc is None:
                raise StoreError(f"users/{target_user} does not exist")
            amount = UserAccount.from_doc(doc).balance
        elif isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("amount must be an integer")

        await self.store.increment(Collection.USERS, target_user, "balance", -amount)
        logger.info(f"{actor.user_name} settled {amount} for {target_user}")
        return amount

    # ==========================================================================
    # MENU EDITS (admin)
    # ==========================================================================

    async def add_menu_item(self, actor: Actor, name: str, price) -> MenuItem:
        self._require_admin(actor, "edit the menu")

        name = (name or "").strip()
        if not name:
            raise ValidationError("item name is required")
        price = _parse_price(price)

        menu = await self.get_menu()
        item = MenuItem(id=_fresh_item_id(menu.item_ids), name=name, price=price)
        items = [*menu.items, item]
        await self.store.put(
            Collection.MENUS, MENU_KEY, {"items": [i.to_dict() for i in items]}, merge=True
        )
        logger.info(f"Menu item added: {item.name} ({item.price})")
        return item

    async def remove_menu_item(self, actor: Actor, item_id: str) -> None:
        """Remove an item. Existing orders keep their own snapshot of it."""
        self._require_admin(actor, "edit the menu")

        menu = await self.get_menu()
        items = [i for i in menu.items if i.id != str(item_id)]
        await self.store.put(
            Collection.MENUS, MENU_KEY, {"items": [i.to_dict() for i in items]}, merge=True
        )
        logger.info(f"Menu item removed: {item_id}")

    async def update_restaurant(self, actor: Actor, field: str, value: str) -> Restaurant:
        self._require_admin(actor, "edit the menu")

        if field not in RESTAURANT_FIELDS:
            raise ValidationError(f"unknown restaurant field {field!r}")

        menu = await self.get_menu()
        restaurant = Restaurant(**{**menu.restaurant.to_dict(), field: (value or "").strip()})
        await self.store.put(
            Collection.MENUS, MENU_KEY, {"restaurant": restaurant.to_dict()}, merge=True
        )
        return restaurant

    async def set_deadline(self, actor: Actor, deadline: Optional[str]) -> str:
        """
        Set ("HH:MM", 24h) or clear (None / "") today's ordering deadline.

        Returns:
            The stored deadline, zero-padded, or "" when cleared
        """
        self._require_admin(actor, "set the deadline")

        value = ""
        if deadline:
            match = DEADLINE_PATTERN.match(deadline.strip())
            if not match:
                raise ValidationError("deadline must be HH:MM (24h)")
            value = f"{int(match.group(1)):02d}:{match.group(2)}"

        await self.store.put(Collection.MENUS, MENU_KEY, {"orderDeadline": value}, merge=True)
        logger.info(f"Order deadline {'set to ' + value if value else 'cleared'}")
        return value

    async def apply_ingested_menu(self, actor: Actor, ingested: IngestedMenu) -> Menu:
        """Replace items, restaurant and photo; the current deadline is kept."""
        self._require_admin(actor, "replace the menu")

        # orderDeadline is left out so merge keeps whatever is stored now
        await self.store.put(
            Collection.MENUS,
            MENU_KEY,
            {
                "restaurant": ingested.restaurant.to_dict(),
                "items": [i.to_dict() for i in ingested.items],
                "imageUrl": ingested.image_url,
            },
            merge=True,
        )
        menu = await self.get_menu()
        logger.info(f"Menu replaced: {menu.restaurant.name!r} ({len(menu.items)} items)")
        return menu

    # ==========================================================================
    # LIVE VIEWS
    # ==========================================================================

    async def watch(
        self,
        user_name: str,
        callback: Callable[[DashboardState], None],
        search_term: str = "",
        tick: bool = True,
    ) -> "LiveView":
        """
        Subscribe to menu, users and orders and receive recomputed state.

        Returns:
            LiveView; call unsubscribe() when done
        """
        view = LiveView(self, user_name, callback, search_term)
        await view.start(tick=tick)
        return view

    # ==========================================================================
    # INTERNALS
    # ==========================================================================

    @staticmethod
    def _require_admin(actor: Actor, action: str) -> None:
        if not actor.is_admin:
            raise AuthorizationError(f"only an admin can {action}")

    async def _write_and_confirm(
        self,
        write: Awaitable[None],
        order_id: str,
        expect_exists: bool,
        action: str,
        user_name: str,
        amount: int,
    ) -> None:
        """
        Run an order write; if its acknowledgement is lost, read back to
        find out whether it happened.

        Raises:
            StoreError: The write did not happen (or could not be confirmed)
        """
        try:
            await write
            return
        except StoreError as e:
            logger.warning(f"Order {order_id}: {action} not acknowledged ({e.message}); checking")
            failure = e

        try:
            exists = await self.store.get(Collection.ORDERS, order_id) is not None
        except StoreError as e:
            if expect_exists:
                # Unknown outcome: make sure no uncharged order is left behind
                await self._compensate(
                    self.store.delete(Collection.ORDERS, order_id), order_id, user_name, amount
                )
            else:
                logger.error(
                    f"LEDGER INCONSISTENCY: cancel of order {order_id} unconfirmed "
                    f"(user={user_name}, amount={amount}) - {e.message}"
                )
            raise StoreError(f"could not {action} order: {failure.message}") from failure

        if exists == expect_exists:
            logger.info(f"Order {order_id}: {action} confirmed on read-back")
            return
        raise StoreError(f"could not {action} order: {failure.message}") from failure

    async def _find_user(self, display_name: str) -> Optional[UserAccount]:
        if not display_name:
            return None
        for doc in await self.store.list(Collection.USERS):
            user = UserAccount.from_doc(doc)
            if _same_user(user.name, display_name):
                return user
        return None

    async def _compensate(
        self,
        undo: Awaitable[None],
        order_id: str,
        user_name: str,
        amount: int,
    ) -> None:
        try:
            await undo
        except StoreError as e:
            logger.error(
                f"LEDGER INCONSISTENCY: compensation for order {order_id} failed "
                f"(user={user_name}, amount={amount}) - {e.message}"
            )

    async def _touch(self, user_name: str) -> None:
        try:
            await self.store.put(
                Collection.USERS, user_name, {"lastActive": SERVER_TIMESTAMP}, merge=True
            )
        except StoreError as e:
            logger.warning(f"Could not refresh lastActive for {user_name} - {e.message}")


class LiveView:
    """
    A client's live subscription.

    Keeps the latest snapshot of each collection and recomputes the whole
    DashboardState from them on every notification and every clock tick.
    Snapshots of different collections arrive independently, so a state may
    briefly show an order without the matching balance change (or the
    reverse) until both notifications are in.
    """

    def __init__(
        self,
        engine: LedgerEngine,
        user_name: str,
        callback: Callable[[DashboardState], None],
        search_term: str = "",
    ):
        self.engine = engine
        self.user_name = user_name
        self.callback = callback
        self.search_term = search_term
        self.state: Optional[DashboardState] = None
        self._menu: Optional[Menu] = None
        self._users: Optional[list[UserAccount]] = None
        self._orders: Optional[list[Order]] = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._ticker: Optional[asyncio.Task] = None

    async def start(self, tick: bool = True) -> None:
        store = self.engine.store
        self._unsubscribers = [
            await store.subscribe(Collection.MENUS, self._on_menus),
            await store.subscribe(Collection.USERS, self._on_users),
            await store.subscribe(Collection.ORDERS, self._on_orders),
        ]
        if tick and self.engine.clock_interval > 0:
            self._ticker = asyncio.create_task(self._tick())

    def unsubscribe(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def set_search_term(self, search_term: str) -> None:
        self.search_term = search_term
        self.refresh()

    def refresh(self) -> None:
        if self._menu is None or self._users is None or self._orders is None:
            return
        self.state = build_dashboard(
            self._menu,
            self._users,
            self._orders,
            self.user_name,
            self.engine.now(),
            self.search_term,
        )
        self.callback(self.state)

    def _on_menus(self, snapshot: Snapshot) -> None:
        doc = next((d for d in snapshot if d.get("id") == MENU_KEY), None)
        self._menu = Menu.from_doc(doc)
        self.refresh()

    def _on_users(self, snapshot: Snapshot) -> None:
        self._users = [UserAccount.from_doc(d) for d in snapshot]
        self.refresh()

    def _on_orders(self, snapshot: Snapshot) -> None:
        self._orders = [Order.from_doc(d) for d in snapshot]
        self.refresh()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.engine.clock_interval)
            try:
                self.refresh()
            except Exception:
                # A failing callback must not stop the clock
                logger.exception(f"Live view for {self.user_name} failed on clock tick")


def _same_user(a: str, b: str) -> bool:
    return normalize_user_name(a).casefold() == normalize_user_name(b).casefold()


def _parse_price(price) -> int:
    if isinstance(price, bool) or price is None or price == "":
        raise ValidationError("item price is required")
    try:
        value = int(str(price).strip())
    except ValueError:
        raise ValidationError("item price must be a whole number")
    if value < 0:
        raise ValidationError("item price cannot be negative")
    return value


def _fresh_item_id(existing: set[str]) -> str:
    candidate = int(time.time() * 1000)
    while str(candidate) in existing:
        candidate += 1
    return str(candidate)


@lru_cache()
def get_engine() -> LedgerEngine:
    """Engine over the configured store (cached)."""
    settings = get_settings()
    return LedgerEngine(
        get_store(),
        admin_passcode=settings.admin_passcode,
        clock=settings.now,
        clock_interval=settings.ordering_clock_interval_seconds,
    )


def reset_engine() -> None:
    """Clear the cached engine."""
    get_engine.cache_clear()
