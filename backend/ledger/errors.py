# Overview: Domain error types shared by services and routes.

from __future__ import annotations


class LedgerError(Exception):
    """Base error carrying an HTTP status and structured details."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None, expected_next: str | None = None):
        super().__init__(message, details)
        self.expected_next = expected_next

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.expected_next is not None:
            payload["expected_next"] = self.expected_next
        return payload


class InvariantViolationError(LedgerError):
    """400-level business rule violation (mixed bundle types, paid below allocations, ...)."""


class NotFoundError(LedgerError):
    status_code = 404


class SequenceConflictError(LedgerError):
    """409: the supplied receipt number is not the next one, or already exists."""

    status_code = 409

    def __init__(self, message: str, expected_next: str | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.expected_next = expected_next

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.expected_next is not None:
            payload["expected_next"] = self.expected_next
        return payload


class SequenceExhaustedError(LedgerError):
    """503: could not allocate a unique receipt number within the retry budget."""

    status_code = 503


class InternalError(LedgerError):
    status_code = 500
