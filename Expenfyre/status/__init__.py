"""Status package: enums and exceptions for handling service state and errors.

This package defines:
    - Status: a StrEnum of possible service states
    - STATUS_MESSAGE: default user-facing messages per status
    - get_message: helper to retrieve messages for statuses
    - BaseStatusException: base exception carrying a Status and an HTTP status code
    - Specific exceptions (e.g., RateLimitExceededException) tagged with statuses
"""
