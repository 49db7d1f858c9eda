"""
SQLAlchemy Database Models

Tables backing the SQL store. Each row maps to one store document; the
column <-> document field mapping lives next to each model.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from office_lunch.database import Base


class UserRecord(Base):
    """
    One ledger participant, keyed by display name.

    balance is owed-by-user-to-group and only ever changes through an
    atomic `balance = balance + :delta` update.
    """
    __tablename__ = "lunch_users"

    name = Column(String(100), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    last_active = Column(DateTime(timezone=True), nullable=True)

    FIELDS = {
        "name": "name",
        "balance": "balance",
        "lastActive": "last_active",
    }

    def __repr__(self):
        return f"<UserRecord {self.name} balance={self.balance}>"


class OrderRecord(Base):
    """
    A placed order. The item name and prices are a snapshot taken at
    order time and never follow later menu edits.
    """
    __tablename__ = "lunch_orders"

    id = Column(String(64), primary_key=True)
    user_name = Column(String(100), nullable=False, index=True)
    item_id = Column(String(64), nullable=False)
    item_name = Column(String(200), nullable=False)
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    note = Column(Text, nullable=False, default="")
    price = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    FIELDS = {
        "userName": "user_name",
        "itemId": "item_id",
        "itemName": "item_name",
        "unitPrice": "unit_price",
        "quantity": "quantity",
        "note": "note",
        "price": "price",
        "createdAt": "created_at",
    }

    def __repr__(self):
        return f"<OrderRecord {self.id} - {self.user_name} - {self.item_name} x{self.quantity}>"


class MenuRecord(Base):
    """The menu singleton, stored as one JSON document."""
    __tablename__ = "lunch_menus"

    key = Column(String(50), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MenuRecord {self.key}>"
