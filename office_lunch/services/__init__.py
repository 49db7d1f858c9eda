"""
                        Services Module

Business logic for the lunch group, each concern behind a swappable
implementation (Mock/Memory in development, Real/SQL in production).

Services:
    - store: synchronized document store (memory, SQL + Redis feed)
    - analysis: menu photo analyzers (backend endpoint, Gemini, mock)
    - ingestion: photo → structured menu pipeline
    - ledger: ordering engine, debt ledger and live views
    - excel_manager: file-locked daily order sheet
"""

from office_lunch.services.excel_manager import ExcelManager
from office_lunch.services.ingestion import MenuIngestionPipeline, get_ingestion_pipeline
from office_lunch.services.ledger import Actor, LedgerEngine, LiveView, get_engine

__all__ = [
    "Actor",
    "ExcelManager",
    "LedgerEngine",
    "LiveView",
    "MenuIngestionPipeline",
    "get_engine",
    "get_ingestion_pipeline",
]
