"""Application-wide constants for the TutorLink platform."""

# Points economy defaults (overridable through Settings)
DEFAULT_POINT_COST = 10
CANCELLATION_PENALTY_POINTS = 50
FREE_SESSION_TUTOR_BONUS = 50
STARTING_POINTS_BALANCE = 100

# Query limits
DEFAULT_UPCOMING_LIMIT = 10
MAX_UPCOMING_LIMIT = 100

# User-facing messages
TIME_CONFLICT_MESSAGE = "Tutor is already booked at this time"
ACCEPT_CONFLICT_MESSAGE = "Time conflict detected"
WAITING_FOR_OTHER_PARTY_MESSAGE = "Confirmation received. Waiting for other party to confirm."
SESSION_COMPLETED_MESSAGE = "Session completed successfully"
SESSION_CANCELLED_MESSAGE = "Session cancelled successfully."
DEFAULT_CANCELLATION_REASON = "User cancelled"
REJECTION_REASON = "Rejected by tutor"

# API
API_TITLE = "TutorLink API"
API_VERSION = "0.1.0"
API_DESCRIPTION = "Peer-tutoring session lifecycle and points settlement."

# Matches the partial unique index on active tutor slots
ACTIVE_SLOT_INDEX_NAME = "uq_tutoring_sessions_tutor_active_slot"
