"""
Common/Shared Fixtures

Base factories and generators used across multiple services.
"""
import uuid
from datetime import datetime, timezone


def make_user_id() -> str:
    """Generate a unique user ID"""
    return f"usr_test_{uuid.uuid4().hex[:12]}"


def make_org_id() -> str:
    """Generate a unique organization ID"""
    return f"org_test_{uuid.uuid4().hex[:12]}"


def make_shipment_id() -> str:
    """Generate a unique shipment ID"""
    return f"shp_test_{uuid.uuid4().hex[:12]}"


def make_timestamp() -> str:
    """Generate current UTC timestamp"""
    return datetime.now(timezone.utc).isoformat()
