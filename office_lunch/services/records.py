"""
Domain Records

Typed views of the store documents. Store documents use camelCase keys
(userName, unitPrice, createdAt, ...); these dataclasses translate them
once so the engine and the derived views never touch raw dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


MENU_PLACEHOLDER_NAME = "Not set"
RESTAURANT_FIELDS = ("name", "phone", "address")


@dataclass
class Restaurant:
    """Restaurant contact block shown above the menu."""
    name: str = ""
    phone: str = ""
    address: str = ""

    @classmethod
    def from_doc(cls, value: Any) -> "Restaurant":
        # Older menus stored the restaurant as a bare name string
        if isinstance(value, str):
            return cls(name=value)
        if not isinstance(value, dict):
            return cls()
        return cls(**{k: str(value.get(k) or "") for k in RESTAURANT_FIELDS})

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "phone": self.phone, "address": self.address}


@dataclass
class MenuItem:
    id: str
    name: str
    price: int

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "MenuItem":
        return cls(
            id=str(doc.get("id", "")),
            name=str(doc.get("name", "")),
            price=int(doc.get("price") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "price": self.price}


@dataclass
class Menu:
    """
    Today's menu (singleton document).

    Attributes:
        restaurant: Contact block
        items: Priced items in display order; ids unique within the menu
        image_url: Normalized photo as a data URL (empty for manual menus)
        order_deadline: "HH:MM" local time, or "" when ordering never closes
    """
    restaurant: Restaurant = field(default_factory=Restaurant)
    items: list[MenuItem] = field(default_factory=list)
    image_url: str = ""
    order_deadline: str = ""

    @classmethod
    def from_doc(cls, doc: Optional[dict[str, Any]]) -> "Menu":
        if doc is None:
            return cls(restaurant=Restaurant(name=MENU_PLACEHOLDER_NAME))
        return cls(
            restaurant=Restaurant.from_doc(doc.get("restaurant")),
            items=[MenuItem.from_doc(i) for i in doc.get("items") or []],
            image_url=doc.get("imageUrl") or "",
            order_deadline=doc.get("orderDeadline") or "",
        )

    def to_doc(self) -> dict[str, Any]:
        return {
            "restaurant": self.restaurant.to_dict(),
            "items": [i.to_dict() for i in self.items],
            "imageUrl": self.image_url,
            "orderDeadline": self.order_deadline,
        }

    def find_item(self, item_id: str) -> Optional[MenuItem]:
        return next((i for i in self.items if i.id == str(item_id)), None)

    @property
    def item_ids(self) -> set[str]:
        return {i.id for i in self.items}


@dataclass
class Order:
    """
    A placed order. Immutable once created except for deletion.

    price is unit_price × quantity, captured at order time.
    """
    id: str
    user_name: str
    item_id: str
    item_name: str
    unit_price: int
    quantity: int
    note: str
    price: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "Order":
        return cls(
            id=str(doc.get("id", "")),
            user_name=doc.get("userName", ""),
            item_id=str(doc.get("itemId", "")),
            item_name=doc.get("itemName", ""),
            unit_price=int(doc.get("unitPrice") or 0),
            quantity=int(doc.get("quantity") or 1),
            note=doc.get("note") or "",
            price=int(doc.get("price") or 0),
            created_at=doc.get("createdAt"),
        )

    def to_doc(self) -> dict[str, Any]:
        """Store fields; createdAt is only included once assigned."""
        doc = {
            "userName": self.user_name,
            "itemId": self.item_id,
            "itemName": self.item_name,
            "unitPrice": self.unit_price,
            "quantity": self.quantity,
            "note": self.note,
            "price": self.price,
        }
        if self.created_at is not None:
            doc["createdAt"] = self.created_at
        return doc


@dataclass
class UserAccount:
    name: str
    balance: int = 0
    last_active: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "UserAccount":
        return cls(
            name=doc.get("name") or doc.get("id", ""),
            balance=int(doc.get("balance") or 0),
            last_active=doc.get("lastActive"),
        )
