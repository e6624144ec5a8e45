"""
Platform-wide exception hierarchy.

Every HIRA service raises one of these types. Each carries a machine-readable
``kind`` plus enough context (current status, attempted action, offending
row indices) for the UI layer to render a precise message. The blueprint
registers one handler per type and maps ``kind`` to an HTTP status.

Usage:
    from hira.core.exceptions import InvalidTransitionError, NotFoundError

    raise NotFoundError(resource="Assessment", resource_id=42)
    raise InvalidTransitionError(current_status="draft", action="approve")
"""


class HiraError(Exception):
    """Base class for recoverable business errors.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured context for API responses.
    """

    kind = "Error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidInputError(HiraError):
    """Malformed likelihood/consequence, date, rating or required field."""

    kind = "InvalidInput"


class ForbiddenError(HiraError):
    """The actor's role or relationship to the assessment does not permit the action.

    Args:
        actor_id: The user attempting the action.
        action: Transition or edit name that was refused.
        reason: Optional extra explanation.
    """

    kind = "Forbidden"

    def __init__(self, actor_id, action: str, reason: str | None = None) -> None:
        self.actor_id = actor_id
        self.action = action
        msg = f"User {actor_id} is not permitted to '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"action": action})


class InvalidTransitionError(HiraError):
    """The transition is not legal from the assessment's current status."""

    kind = "InvalidTransition"

    def __init__(self, current_status: str, action: str, reason: str | None = None) -> None:
        self.current_status = current_status
        self.action = action
        msg = f"Cannot '{action}' assessment (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"current_status": current_status, "action": action})


class IncompleteDataError(HiraError):
    """Required worksheet fields are missing at a completion boundary.

    Args:
        row_indices: Positions of the offending worksheet rows.
        missing: Optional map of row index -> list of missing field names.
    """

    kind = "IncompleteData"

    def __init__(self, row_indices: list[int], missing: dict | None = None) -> None:
        self.row_indices = list(row_indices)
        self.missing = missing or {}
        if self.row_indices:
            msg = f"Worksheet rows incomplete: {', '.join(str(i) for i in self.row_indices)}"
        else:
            msg = "Worksheet has no rows"
        super().__init__(
            msg,
            details={"row_indices": self.row_indices,
                     "missing": {str(k): v for k, v in self.missing.items()}},
        )


class EmptySelectionError(HiraError):
    """A bulk operation was invoked with no target rows."""

    kind = "EmptySelection"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"'{operation}' requires at least one selected row",
                         details={"operation": operation})


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given company.

    Cross-company lookups are reported exactly like missing records so a
    caller cannot probe for the existence of another company's data.

    Args:
        resource: Human-readable entity name (e.g. "Assessment").
        resource_id: The PK that was looked up.
        company_id: Optional scope that was enforced. For debug logging only.
    """

    kind = "NotFound"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        company_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.company_id = company_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)
