"""
Central constants for the ARSD admin portal.
"""
from __future__ import annotations

PROJECT_STATUSES = {
    "in_planning": "In Planning",
    "in_progress": "In Progress",
    "completed": "Completed",
}

REPORT_STATUSES = {
    "pending": "Pending Review",
    "approved": "Approved",
    "rejected": "Rejected",
}

REPORT_ALLOWED_EXTENSIONS = frozenset({".xlsx", ".csv"})

WAREHOUSE_PHOTO_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".heic", ".pdf"})

CURRENCY_SYMBOL = "₱"
