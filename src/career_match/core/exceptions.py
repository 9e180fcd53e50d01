"""Exception hierarchy for Career Match."""

from typing import Optional


class CareerMatchError(Exception):
    """Base class for all domain errors."""
    status_code = 500

    def __init__(self, message: str, *, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id


class NotFoundError(CareerMatchError):
    """Requested entity does not exist."""
    status_code = 404


class OwnershipError(CareerMatchError):
    """User does not own the entity."""
    status_code = 403


class ConfirmationRequiredError(CareerMatchError):
    """A side-effecting action was requested without confirmation."""
    status_code = 400


class ConflictError(CareerMatchError):
    """Request conflicts with the entity's current state."""
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Status transition is not in the transition table."""

    def __init__(self, entity_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Transition {from_status} -> {to_status} is not allowed",
            entity_id=entity_id
        )
        self.from_status = from_status
        self.to_status = to_status


class AlreadySentError(ConflictError):
    """Application has already left the Queued state."""


class ApplicationNotEditableError(ConflictError):
    """Tailored content can only change while Queued."""


class DuplicateApplicationError(ConflictError):
    """Match already has an application."""


class MatchNotApprovedError(ConflictError):
    """Applications can only be created from approved matches."""


class MatchAlreadyDecidedError(ConflictError):
    """Match has already been approved or rejected."""


class DuplicateMatchError(ConflictError):
    """A match for this (user, posting) pair already exists."""


class InvalidEmbeddingError(CareerMatchError):
    """Embedding is missing, mis-sized or not finite."""
    status_code = 422


class FeedbackDataError(CareerMatchError):
    """Feedback records cannot be aggregated."""
    status_code = 422


class DeliveryError(CareerMatchError):
    """Distribution channel failed to deliver an application."""
    status_code = 502
