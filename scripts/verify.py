"""
Ledger Verification Script

Checks the balance invariant through the API: each user's balance equals
the sum of their orders minus settlements. Settlements are not stored as
records, so any difference is reported for a human to match against the
payments they recorded.

Optionally checks the last daily order sheet export as well.
Run from project root: python scripts/verify.py [--sheet data/daily_orders.xlsx]
"""

import argparse
import os
from datetime import datetime

import httpx
import pandas as pd

API_BASE_URL = "http://localhost:8001"


def verify_ledger(base_url: str = API_BASE_URL) -> bool:
    """Compare every user's balance with the total of their order history."""
    print("=" * 60)
    print("LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"API: {base_url}")
    print("=" * 60)

    with httpx.Client(base_url=base_url, timeout=30.0) as client:
        response = client.get("/api/users")
        response.raise_for_status()
        data = response.json()

        clean = True
        print(f"\n{'user':<15}{'balance':>10}{'ordered':>10}{'difference':>12}")
        print("-" * 47)
        for user in data["users"]:
            history = client.get(
                "/api/orders/history", headers={"X-User-Name": user["name"]}
            )
            history.raise_for_status()
            ordered = sum(group["total"] for group in history.json())
            difference = ordered - user["balance"]
            clean = clean and difference == 0
            print(f"{user['name']:<15}{user['balance']:>10}{ordered:>10}{difference:>12}")

    print("-" * 47)
    print(f"Total debt: {data['total_debt']}")
    if clean:
        print("\nEvery balance equals its order total (no settlements recorded)")
    else:
        print("\nNon-zero differences must match recorded settlements")
    return clean


def verify_sheet(path: str) -> bool:
    """The Items sheet must add up to the Orders sheet."""
    print("\n" + "=" * 60)
    print(f"DAILY SHEET: {path}")
    print("=" * 60)

    if not os.path.exists(path):
        print("Sheet not found. Queue one with POST /api/exports/daily")
        return False

    orders = pd.read_excel(path, sheet_name="Orders", engine="openpyxl")
    items = pd.read_excel(path, sheet_name="Items", engine="openpyxl")

    duplicates = int(orders["order_id"].duplicated().sum())
    orders_total = int(orders["price"].sum()) if len(orders) else 0
    items_total = int(items["total"].sum()) if len(items) else 0

    print(f"Orders: {len(orders)}   Duplicate ids: {duplicates}")
    print(f"Orders total: {orders_total}   Items total: {items_total}")
    if len(items):
        print("\n" + items.to_string(index=False))

    ok = duplicates == 0 and orders_total == items_total
    print("\nSHEET CONSISTENT" if ok else "\nSHEET MISMATCH")
    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ledger Verification")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    parser.add_argument("--sheet", default=None, help="Daily sheet to check as well")
    args = parser.parse_args()

    verify_ledger(args.url)
    if args.sheet:
        verify_sheet(args.sheet)
