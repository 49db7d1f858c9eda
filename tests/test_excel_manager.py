import pandas as pd
import pytest
from filelock import FileLock

from office_lunch.services.excel_manager import ExcelManager
from office_lunch.tasks import export_daily_sheet

ORDERS = [
    {
        "id": "o1",
        "createdAt": "2026-10-19T11:02:00+00:00",
        "userName": "Alice",
        "itemId": "1",
        "itemName": "Fried Rice",
        "unitPrice": 90,
        "quantity": 2,
        "note": "less spicy",
        "price": 180,
    },
    {
        "id": "o2",
        "createdAt": "2026-10-19T11:05:00+00:00",
        "userName": "Bob",
        "itemId": "2",
        "itemName": "Beef Noodle Soup",
        "unitPrice": 150,
        "quantity": 1,
        "note": "",
        "price": 150,
    },
    {
        "id": "o3",
        "createdAt": "2026-10-19T11:07:00+00:00",
        "userName": "Bob",
        "itemId": "1",
        "itemName": "Fried Rice",
        "unitPrice": 90,
        "quantity": 1,
        "note": "",
        "price": 90,
    },
]

USERS = [
    {"name": "Alice", "balance": 180, "lastActive": "2026-10-19T11:02:00+00:00"},
    {"name": "Bob", "balance": 240, "lastActive": "2026-10-19T11:07:00+00:00"},
]


def test_export_daily_sheet_writes_all_sheets(tmp_path) -> None:
    manager = ExcelManager(data_directory=str(tmp_path / "data"), filename="sheet.xlsx")

    result = manager.export_daily_sheet(ORDERS, USERS)

    assert result["success"]
    assert result["order_count"] == 3
    assert result["grand_total"] == 420

    orders = manager.read_sheet("Orders")
    assert [o["order_id"] for o in orders] == ["o1", "o2", "o3"]

    items = {row["item_name"]: row for row in manager.read_sheet("Items")}
    assert items["Fried Rice"]["quantity"] == 3
    assert items["Fried Rice"]["total"] == 270
    assert items["Beef Noodle Soup"]["total"] == 150

    ledger = manager.read_sheet("Ledger")
    assert [row["user_name"] for row in ledger] == ["Bob", "Alice"]


def test_export_with_no_orders(tmp_path) -> None:
    manager = ExcelManager(data_directory=str(tmp_path), filename="empty.xlsx")

    result = manager.export_daily_sheet([], USERS)

    assert result["success"]
    assert result["grand_total"] == 0
    assert manager.read_sheet("Orders") == []
    assert len(manager.read_sheet("Ledger")) == 2


def test_export_lock_timeout(tmp_path) -> None:
    manager = ExcelManager(data_directory=str(tmp_path), filename="busy.xlsx", lock_timeout=0.1)

    with FileLock(str(manager.lock_path)):
        result = manager.export_daily_sheet(ORDERS, USERS)

    assert not result["success"]
    assert "Lock timeout" in result["message"]
    assert not manager.file_path.exists()


def test_clear_removes_workbook(tmp_path) -> None:
    manager = ExcelManager(data_directory=str(tmp_path), filename="sheet.xlsx")
    manager.export_daily_sheet(ORDERS, USERS)

    assert manager.clear()
    assert manager.read_sheet() == []


def test_export_task_runs_locally(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(
        "office_lunch.tasks.ExcelManager",
        lambda: ExcelManager(data_directory=str(tmp_path), filename="task.xlsx"),
    )

    result = export_daily_sheet.apply(args=[{"orders": ORDERS, "users": USERS}]).get()

    assert result["success"]
    assert result["order_count"] == 3
    assert "processing_time_seconds" in result


def test_write_error_propagates(tmp_path, monkeypatch) -> None:
    manager = ExcelManager(data_directory=str(tmp_path), filename="sheet.xlsx")

    def disk_full(*args, **kwargs):
        raise OSError("No space left on device")

    monkeypatch.setattr(pd, "ExcelWriter", disk_full)

    with pytest.raises(OSError, match="No space left"):
        manager.export_daily_sheet(ORDERS, USERS)


def test_export_task_reraises_write_errors_for_retry(monkeypatch) -> None:
    class FullDisk:
        def export_daily_sheet(self, orders, users):
            raise OSError("No space left on device")

    monkeypatch.setattr("office_lunch.tasks.ExcelManager", FullDisk)

    with pytest.raises(OSError):
        export_daily_sheet({"orders": ORDERS, "users": USERS})
