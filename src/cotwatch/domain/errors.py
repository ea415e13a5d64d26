"""
Typed failures raised by the engine.

- `ValidationFailure`: malformed input (bad coordinates, degenerate shape, missing reference).
  Always raised before any state mutation.
- `EntityNotFound`: a referenced entity id has no current state.
- `AlertNotFound`: an alert id is unknown to the alert log.

"Insufficient data" for movement analysis is deliberately *not* an exception; it is a flag on
the analysis result.
"""

from __future__ import annotations


class CotwatchError(Exception):
    """Base class for all engine failures."""


class ValidationFailure(CotwatchError, ValueError):
    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def as_dict(self) -> dict:
        out = {"code": "VALIDATION_ERROR", "message": self.message}
        if self.field:
            out["field"] = self.field
        return out


class EntityNotFound(CotwatchError, LookupError):
    def __init__(self, entity_id: str):
        super().__init__(f"Entity {entity_id} not found")
        self.entity_id = entity_id

    def as_dict(self) -> dict:
        return {"code": "NOT_FOUND", "message": str(self), "entity_id": self.entity_id}


class AlertNotFound(CotwatchError, LookupError):
    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id

    def as_dict(self) -> dict:
        return {"code": "NOT_FOUND", "message": str(self), "alert_id": self.alert_id}
