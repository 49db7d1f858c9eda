"""
Error Types

Every failure the engine, the store adapters and the ingestion pipeline
report is one of these. The HTTP layer maps each kind to a status code.

    LunchError
     ├── ValidationError          bad input, rejected before any mutation
     ├── ConfigurationError       a required credential is missing
     ├── IngestionError           menu photo could not be turned into a menu
     │    └── AnalysisUnavailableError   analysis path unreachable
     ├── StoreError               read/write against the store failed
     └── AuthorizationError       wrong passcode or not allowed
          └── OrderingClosedError past the ordering deadline
"""


class LunchError(Exception):
    """Base class for all application errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON error bodies."""
        return {
            "success": False,
            "error": self.kind,
            "detail": self.message,
        }


class ValidationError(LunchError):
    kind = "validation_error"
    status_code = 400


class ConfigurationError(LunchError):
    kind = "configuration_error"
    status_code = 500


class IngestionError(LunchError):
    """Raised with the message shown to the admin ("ingestion failed: ...")."""

    kind = "ingestion_error"
    status_code = 502


class AnalysisUnavailableError(IngestionError):
    kind = "analysis_unavailable"


class StoreError(LunchError):
    kind = "store_error"
    status_code = 503


class AuthorizationError(LunchError):
    kind = "authorization_error"
    status_code = 403


class OrderingClosedError(AuthorizationError):
    kind = "ordering_closed"
    status_code = 409
