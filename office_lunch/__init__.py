"""
                Office Lunch

Shared group-ordering backend for a small team: one daily menu
(AI-extracted from a photo or typed in), per-user orders with a
deadline, and a running debt ledger with settlement.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
