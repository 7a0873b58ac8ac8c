# ==== WORKFLOW ERROR TAXONOMY ==== #

"""
Error taxonomy raised by the claim workflow engine.

Four deterministic, side-effect-free rejections (not found, forbidden,
invalid state, validation) plus a transient family for storage faults and
lost optimistic-concurrency races. Every error carries a stable ``code``
and a ``retryable`` flag so the HTTP layer can render it without
inspecting the concrete class.
"""

from typing import Optional


class ClaimWorkflowError(Exception):
    """Base class for every error the workflow engine raises."""
    
    code: str = "WORKFLOW_ERROR"
    status_code: int = 400
    retryable: bool = False
    
    def __init__(self, message: str, claim_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.claim_id = claim_id


class ClaimNotFoundError(ClaimWorkflowError):
    """Referenced claim does not exist."""
    code = "NOT_FOUND"
    status_code = 404


class ClaimForbiddenError(ClaimWorkflowError):
    """Actor lacks the role, ownership or management relation for the action."""
    code = "FORBIDDEN"
    status_code = 403


class InvalidClaimStateError(ClaimWorkflowError):
    """Action is not valid from the claim's current status."""
    code = "INVALID_STATE"
    status_code = 409


class ClaimValidationError(ClaimWorkflowError):
    """Malformed input such as a non-positive amount or a missing comment."""
    code = "VALIDATION_ERROR"
    status_code = 422
    
    def __init__(
        self,
        message: str,
        claim_id: Optional[int] = None,
        field: Optional[str] = None
    ):
        super().__init__(message, claim_id)
        self.field = field


class TransientClaimError(ClaimWorkflowError):
    """Storage could not complete the atomic unit; safe to retry."""
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True


class StorageUnavailableError(TransientClaimError):
    """Database fault while loading or committing a claim."""


class ConcurrentUpdateError(TransientClaimError):
    """Another writer committed first and the action is still applicable."""
    code = "CONCURRENT_UPDATE"
    status_code = 409
