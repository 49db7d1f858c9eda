"""
Celery Tasks
Background jobs for the daily order sheet.
"""

import logging
import time
from datetime import datetime

from office_lunch.celery_worker import celery_app
from office_lunch.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True,
)
def export_daily_sheet(self, payload: dict) -> dict:
    """
    Write the daily order sheet.

    Args:
        payload: {"orders": [...], "users": [...]} as JSON-safe documents

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    orders = payload.get("orders", [])
    users = payload.get("users", [])

    logger.info(f"Task {task_id}: exporting {len(orders)} orders")
    start_time = time.time()

    try:
        result = ExcelManager().export_daily_sheet(orders, users)
    except OSError as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"Task {task_id}: write error after {elapsed}s - {e}")
        # Celery will auto-retry based on configuration
        raise

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if result["success"]:
        logger.info(f"Task {task_id}: daily sheet written in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: export failed - {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """Simple health check task to verify Celery is working."""
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now().isoformat(),
    }
