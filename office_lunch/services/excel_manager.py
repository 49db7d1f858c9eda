"""
Daily Order Sheet Export

Writes the day's orders and the current ledger to an Excel workbook so the
order can be phoned in to the restaurant and debts checked on paper.

Sheets:
    - Orders   one row per order placed today
    - Items    quantities and totals per menu item (what to ask for)
    - Ledger   every user's balance

The workbook is rewritten on each export under a file lock, so concurrent
Celery workers never interleave writes.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from office_lunch.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """File-locked writer for the daily order sheet."""

    ORDER_COLUMNS = [
        "order_id",
        "created_at",
        "user_name",
        "item_id",
        "item_name",
        "unit_price",
        "quantity",
        "note",
        "price",
    ]

    ITEM_COLUMNS = ["item_name", "quantity", "total"]

    LEDGER_COLUMNS = ["user_name", "balance", "last_active"]

    def __init__(
        self,
        data_directory: Optional[str] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.file_path = self.data_dir / (filename or settings.excel_filename)
        self.lock_path = self.file_path.with_name(self.file_path.name + ".lock")
        self.lock_timeout = settings.excel_lock_timeout if lock_timeout is None else lock_timeout

    def _ensure_data_dir(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    @classmethod
    def _orders_frame(cls, orders: list[dict[str, Any]]) -> pd.DataFrame:
        rows = [
            {
                "order_id": o.get("id"),
                "created_at": o.get("createdAt"),
                "user_name": o.get("userName"),
                "item_id": o.get("itemId"),
                "item_name": o.get("itemName"),
                "unit_price": o.get("unitPrice"),
                "quantity": o.get("quantity", 1),
                "note": o.get("note", ""),
                "price": o.get("price", 0),
            }
            for o in orders
        ]
        return pd.DataFrame(rows, columns=cls.ORDER_COLUMNS)

    @classmethod
    def _items_frame(cls, orders_df: pd.DataFrame) -> pd.DataFrame:
        if orders_df.empty:
            return pd.DataFrame(columns=cls.ITEM_COLUMNS)
        summary = (
            orders_df.groupby("item_name", sort=True)
            .agg(quantity=("quantity", "sum"), total=("price", "sum"))
            .reset_index()
        )
        return summary[cls.ITEM_COLUMNS]

    @classmethod
    def _ledger_frame(cls, users: list[dict[str, Any]]) -> pd.DataFrame:
        rows = [
            {
                "user_name": u.get("name"),
                "balance": u.get("balance", 0),
                "last_active": u.get("lastActive"),
            }
            for u in users
        ]
        df = pd.DataFrame(rows, columns=cls.LEDGER_COLUMNS)
        return df.sort_values("balance", ascending=False, ignore_index=True)

    def export_daily_sheet(
        self,
        orders: list[dict[str, Any]],
        users: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Write today's orders and the ledger to the workbook.

        Args:
            orders: Order documents (timestamps already ISO strings)
            users: User documents

        Returns:
            Result dict with success flag, message, counts and grand total

        Raises:
            OSError: The workbook could not be written (the task retries)
        """
        self._ensure_data_dir()

        result = {
            "success": False,
            "message": "",
            "file": str(self.file_path),
            "order_count": len(orders),
            "grand_total": 0,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {self.file_path.name}")

                orders_df = self._orders_frame(orders)
                items_df = self._items_frame(orders_df)
                ledger_df = self._ledger_frame(users)

                with pd.ExcelWriter(str(self.file_path), engine="openpyxl") as writer:
                    orders_df.to_excel(writer, sheet_name="Orders", index=False)
                    items_df.to_excel(writer, sheet_name="Items", index=False)
                    ledger_df.to_excel(writer, sheet_name="Ledger", index=False)

                export_time = datetime.now().isoformat()
                grand_total = int(orders_df["price"].sum()) if not orders_df.empty else 0
                result.update(
                    success=True,
                    message=f"Exported {len(orders)} orders",
                    grand_total=grand_total,
                    exported_at=export_time,
                )
                logger.info(
                    f"Daily sheet exported: {len(orders)} orders, total {grand_total}"
                )

            logger.debug(f"Lock released for {self.file_path.name}")

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout exporting {self.file_path.name}")

        except OSError:
            logger.exception(f"Error writing {self.file_path}")
            raise

        return result

    def read_sheet(self, sheet_name: str = "Orders") -> list[dict[str, Any]]:
        """Rows of one sheet of the last export, or [] if nothing was exported."""
        if not self.file_path.exists():
            return []
        df = pd.read_excel(self.file_path, sheet_name=sheet_name, engine="openpyxl")
        return df.to_dict("records")

    def clear(self) -> bool:
        """Delete the workbook and its lock file."""
        try:
            for f in [self.file_path, self.lock_path]:
                if f.exists():
                    f.unlink()
            logger.info("Daily sheet cleared")
            return True
        except OSError as e:
            logger.error(f"Error clearing daily sheet: {e}")
            return False
