"""Status definitions and exceptions for Expenfyre.

This module provides:
    - Status: enumeration of possible service states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status and the HTTP code it maps to
    - Specific exceptions (e.g., BudgetNotFoundException) raised by the services and
      rendered by the API layer as ``{success: false, error: ...}`` envelopes
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of service status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Settings status
    SettingsInvalid = enum.auto()

    # Client input
    ValidationFailed = enum.auto()
    FileInvalid = enum.auto()

    # Authentication status
    NotAuthenticated = enum.auto()
    AccessDenied = enum.auto()
    OAuthFailed = enum.auto()
    PermissionDenied = enum.auto()
    RateLimitExceeded = enum.auto()

    # Lookups
    NotFound = enum.auto()
    GroupNotFound = enum.auto()
    MemberNotFound = enum.auto()
    ExpenseNotFound = enum.auto()
    BudgetNotFound = enum.auto()
    FileNotFound = enum.auto()
    Conflict = enum.auto()

    # Spreadsheet service status
    ServiceUnavailable = enum.auto()
    SheetsRateLimited = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Internal server error.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsInvalid: 'The service settings are incomplete, or contain invalid values.',

    Status.ValidationFailed: 'Invalid request.',
    Status.FileInvalid: 'Invalid file.',

    Status.NotAuthenticated: 'Unauthorized.',
    Status.AccessDenied: 'Access denied. Your account is not on the access list.',
    Status.OAuthFailed: 'Google sign-in failed.',
    Status.PermissionDenied: 'Insufficient permissions.',
    Status.RateLimitExceeded: 'Rate limit exceeded. Please try again later.',

    Status.NotFound: 'Not found.',
    Status.GroupNotFound: 'Group not found.',
    Status.MemberNotFound: 'Group member not found.',
    Status.ExpenseNotFound: 'Expense not found.',
    Status.BudgetNotFound: 'Budget not found.',
    Status.FileNotFound: 'File not found.',
    Status.Conflict: 'The resource already exists.',

    Status.ServiceUnavailable: 'Google Sheets service is unavailable.',
    Status.SheetsRateLimited: 'Google Sheets rate limit reached. Please try again shortly.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in Expenfyre.

    Attributes:
        status (Status): Status code associated with this error.
        http_status (int): HTTP response code the API layer uses for this error.
        status_message (str): User-facing message for the status.
        detail (str): The additional context passed by the raiser, if any.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus
    http_status = 500
    log_level = logging.ERROR

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.log(self.log_level, exception_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during request processing."""
    pass


class SettingsInvalidException(BaseStatusException):
    """Exception raised when the service settings are missing values or fail validation."""
    status = Status.SettingsInvalid


class ValidationException(BaseStatusException):
    """Exception raised when a request is missing required fields or carries bad values."""
    status = Status.ValidationFailed
    http_status = 400
    log_level = logging.WARNING


class FileInvalidException(ValidationException):
    """Exception raised when an uploaded file has a disallowed type or size."""
    status = Status.FileInvalid


class NotAuthenticatedException(BaseStatusException):
    """Exception raised when a request carries no valid access token."""
    status = Status.NotAuthenticated
    http_status = 401
    log_level = logging.INFO


class AccessDeniedException(BaseStatusException):
    """Exception raised when a signed-in Google account is not on the whitelist.

    Attributes:
        profile (dict): The Google profile of the denied account, used to render the
            access-denied page and prefill an access request.
    """
    status = Status.AccessDenied
    http_status = 401
    log_level = logging.WARNING

    def __init__(self, message: str = None, profile: dict = None):
        self.profile = profile or {}
        super().__init__(message)


class OAuthException(BaseStatusException):
    """Exception raised when the Google code exchange or ID token verification fails."""
    status = Status.OAuthFailed
    http_status = 401


class PermissionDeniedException(BaseStatusException):
    """Exception raised when a group member's role does not allow the operation."""
    status = Status.PermissionDenied
    http_status = 403
    log_level = logging.WARNING


class RateLimitExceededException(BaseStatusException):
    """Exception raised when a token operation exceeds its fixed-window rate limit."""
    status = Status.RateLimitExceeded
    http_status = 429
    log_level = logging.WARNING


class NotFoundException(BaseStatusException):
    """Exception raised when a row is absent or outside the caller's groups."""
    status = Status.NotFound
    http_status = 404
    log_level = logging.INFO


class GroupNotFoundException(NotFoundException):
    """Exception raised when a group does not exist or the caller is not a member."""
    status = Status.GroupNotFound


class MemberNotFoundException(NotFoundException):
    """Exception raised when a group membership cannot be found."""
    status = Status.MemberNotFound


class ExpenseNotFoundException(NotFoundException):
    """Exception raised when an expense cannot be found."""
    status = Status.ExpenseNotFound


class BudgetNotFoundException(NotFoundException):
    """Exception raised when a budget cannot be found."""
    status = Status.BudgetNotFound


class FileNotFoundException(NotFoundException):
    """Exception raised when an uploaded file is missing or expired."""
    status = Status.FileNotFound


class ConflictException(BaseStatusException):
    """Exception raised when creating something that already exists."""
    status = Status.Conflict
    http_status = 409
    log_level = logging.WARNING


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the Google Sheets API returns an error or cannot be reached."""
    status = Status.ServiceUnavailable
    http_status = 502


class SheetsRateLimitedException(ServiceUnavailableException):
    """Exception raised when the Google Sheets API answers HTTP 429."""
    status = Status.SheetsRateLimited
