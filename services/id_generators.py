import random
import uuid
from datetime import datetime


def generate_receipt_number(created_at: datetime) -> str:
    """
    Generate a receipt number in the format RCP-YYYYMMDD-NNNN where NNNN is a
    random 4-digit suffix. Uniqueness is not checked here.
    """
    return f"RCP-{created_at.strftime('%Y%m%d')}-{random.randint(0, 9999):04d}"


def generate_verification_code() -> str:
    """8-character uppercase alphanumeric gate-pass code."""
    return uuid.uuid4().hex[:8].upper()
