"""
Custom Exceptions for MUN Registration Application

This module defines custom exception classes that provide specific
error handling for the failure scenarios of the registration system:
invalid input, remote service failures, stale seat inventories and
partially completed seat assignments.
"""

from typing import List, Optional


class MUNRegistrationException(Exception):
    """
    Base exception for MUN Registration application

    All custom exceptions in the registration system inherit from this
    base class for consistent error handling.
    """

    def __init__(self, message: str, error_code: str = None):
        """
        Initialize MUN Registration exception

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        """String representation of the exception"""
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class CommitteeNotFoundException(MUNRegistrationException):
    """
    Raised when a committee is not found in the store
    """

    def __init__(self, committee_id: str):
        """
        Initialize committee not found exception

        Args:
            committee_id: The ID of the committee that was not found
        """
        message = f"Committee with ID '{committee_id}' not found"
        super().__init__(message, "COMMITTEE_NOT_FOUND")
        self.committee_id = committee_id


class UserNotFoundException(MUNRegistrationException):
    """Raised when a user profile is not found in the store"""

    def __init__(self, user_id: str):
        message = f"User with ID '{user_id}' not found"
        super().__init__(message, "USER_NOT_FOUND")
        self.user_id = user_id


class AuthenticationFailedException(MUNRegistrationException):
    """
    Raised when authentication fails

    This exception is thrown when login credentials are invalid, the
    account already exists on registration, or the auth provider
    rejects the request.
    """

    def __init__(self, email: str = None, provider_code: str = None):
        """
        Initialize authentication failed exception

        Args:
            email: Optional email that failed authentication
            provider_code: Optional error code reported by the auth provider
        """
        if email:
            message = f"Authentication failed for '{email}'"
        else:
            message = "Authentication failed - invalid credentials"
        if provider_code:
            message = f"{message} ({provider_code})"
        super().__init__(message, "AUTH_FAILED")
        self.email = email
        self.provider_code = provider_code


class DataValidationException(MUNRegistrationException):
    """
    Raised when data validation fails

    This exception is thrown when input data or a stored document
    doesn't meet the required validation criteria.
    """

    def __init__(self, field_name: str, validation_error: str):
        """
        Initialize data validation exception

        Args:
            field_name: Name of the field that failed validation
            validation_error: Description of the validation error
        """
        message = f"Validation error in field '{field_name}': {validation_error}"
        super().__init__(message, "VALIDATION_ERROR")
        self.field_name = field_name
        self.validation_error = validation_error


class DataAccessException(MUNRegistrationException):
    """
    Raised when data access operations fail

    This exception is thrown when reading from or writing to the
    document store fails.
    """

    def __init__(self, operation: str, details: str):
        """
        Initialize data access exception

        Args:
            operation: The operation that failed (e.g., 'get_all', 'update')
            details: Detailed error information
        """
        message = f"Data access error during {operation}: {details}"
        super().__init__(message, "DATA_ACCESS_ERROR")
        self.operation = operation
        self.details = details


class ExternalServiceException(MUNRegistrationException):
    """
    Raised when object storage, email delivery or another
    third-party service call fails
    """

    def __init__(self, service: str, details: str):
        message = f"{service} request failed: {details}"
        super().__init__(message, "EXTERNAL_SERVICE_ERROR")
        self.service = service
        self.details = details


class SeatSelectionException(MUNRegistrationException):
    """
    Raised when a seat selection cannot be assigned

    Selected positions must exist in the committee's seat list and
    refer to seats that are currently available.
    """

    def __init__(self, committee_name: str, reason: str):
        message = f"Invalid seat selection for '{committee_name}': {reason}"
        super().__init__(message, "SEAT_SELECTION_ERROR")
        self.committee_name = committee_name
        self.reason = reason


class ConfirmationRequired(MUNRegistrationException):
    """
    Raised when a destructive operation runs without explicit
    operator confirmation

    The message is the question the operator has to answer.
    """

    def __init__(self, prompt: str):
        super().__init__(prompt, "CONFIRMATION_REQUIRED")
        self.prompt = prompt


class StaleCommitteeException(MUNRegistrationException):
    """
    Raised when a committee's seat list changed in the store since
    the snapshot being written was read
    """

    def __init__(self, committee_id: str, expected_revision: int, actual_revision: int):
        message = (
            f"Committee '{committee_id}' was modified by someone else "
            f"(revision {actual_revision}, expected {expected_revision}); "
            "reload and retry"
        )
        super().__init__(message, "STALE_COMMITTEE")
        self.committee_id = committee_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


class AssignmentFailedException(MUNRegistrationException):
    """
    Raised when a seat assignment aborts partway

    Steps that already completed are not undone. The exception records
    which ones did so the operator can finish or undo the rest by hand.
    The original error is chained as ``__cause__``.
    """

    def __init__(
        self,
        committee_name: str,
        failed_step: str,
        completed: List[str],
        details: str,
        receipt_url: Optional[str] = None,
    ):
        """
        Initialize assignment failed exception

        Args:
            committee_name: Committee the seats belong to
            failed_step: Name of the step that raised
            completed: Names of the steps that finished before the failure
            details: Best-available error message of the failure
            receipt_url: Public URL of the uploaded receipt, if any
        """
        done = ", ".join(completed) if completed else "none"
        message = (
            f"Assignment for '{committee_name}' failed at step '{failed_step}': "
            f"{details} (completed steps: {done})"
        )
        super().__init__(message, "ASSIGNMENT_FAILED")
        self.committee_name = committee_name
        self.failed_step = failed_step
        self.completed = list(completed)
        self.details = details
        self.receipt_url = receipt_url
