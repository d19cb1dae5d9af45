"""
Custom exceptions for the Team Competition stats engine with user-friendly error messages.
"""

class TeamCompetitionException(Exception):
    """Base exception for Team Competition errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ExternalConnectionError(TeamCompetitionException):
    """Raised when the external stats API cannot be reached or returns an unusable response."""
    def __init__(self, url: str, message: str):
        super().__init__(
            f"Error connecting to '{url}': {message}",
            "❌ Unable to retrieve stats from the stats API. Please try again later."
        )
        self.url = url
        self.message = message

class StorageUnavailable(TeamCompetitionException):
    """Raised when the stats store loses connectivity."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Storage unavailable during {operation}: {details}",
            "❌ Database error occurred. Please try again later."
        )
        self.operation = operation

class ServiceUnavailable(TeamCompetitionException):
    """Raised when the current system state does not permit the requested operation type."""
    def __init__(self, system_state, operation_type):
        super().__init__(
            f"System state {system_state.name} does not allow {operation_type.name} operations",
            "❌ Team Competition stats are being updated. Please try again shortly."
        )
        self.system_state = system_state
        self.operation_type = operation_type

class NotFoundError(TeamCompetitionException):
    """Raised when a team, user or hardware cannot be found."""
    def __init__(self, entity: str, identifier):
        super().__init__(
            f"{entity} '{identifier}' not found",
            f"❌ {entity} '{identifier}' not found!"
        )
