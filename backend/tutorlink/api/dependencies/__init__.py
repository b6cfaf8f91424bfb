from .auth import get_current_user
from .database import get_db
from .services import (
    get_points_ledger,
    get_scheduling_service,
    get_session_dashboard_service,
)

__all__ = [
    "get_current_user",
    "get_db",
    "get_points_ledger",
    "get_scheduling_service",
    "get_session_dashboard_service",
]
