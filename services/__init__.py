"""services package"""

__all__ = [
    "announcements",
    "exam_ledger",
    "fee_ledger",
    "gatepass",
    "id_generators",
    "reports",
    "school_calendar",
    "schedules",
]
