"""
Error taxonomy for the expense workflow.

The first four are expected outcomes that carry a user-facing message.
WorkflowFailure wraps unexpected store failures; its message is generic.
"""

from typing import Optional


class ExpenseWorkflowError(Exception):
    code = "WORKFLOW_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ExpenseWorkflowError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthorizationError(ExpenseWorkflowError):
    code = "FORBIDDEN"


class AuthenticationError(AuthorizationError):
    """No principal could be resolved for the request."""

    code = "UNAUTHENTICATED"


class NotFoundError(ExpenseWorkflowError):
    code = "NOT_FOUND"


class InvalidStateError(ExpenseWorkflowError):
    code = "INVALID_STATE"

    def __init__(self, message: str, current_status=None):
        super().__init__(message)
        self.current_status = current_status


class WorkflowFailure(ExpenseWorkflowError):
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "The request could not be completed. Please try again."):
        super().__init__(message)
