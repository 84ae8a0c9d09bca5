# Overview: Domain error taxonomy shared by services and routes.

from __future__ import annotations


class ShoptabError(Exception):
    """Base for domain errors; carries a message and structured details."""

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


class ValidationError(ShoptabError):
    """400-level input problem (non-positive quantity, missing delivery fields)."""
    status_code = 400


class ForbiddenError(ShoptabError):
    """403-level ownership / role problem."""
    status_code = 403


class NotFoundError(ShoptabError):
    """404-level missing cart, order, item, account, product or shop."""
    status_code = 404


class ConflictError(ShoptabError):
    """409-level uniqueness conflict (duplicate account, order already on credit)."""
    status_code = 409


class PolicyViolationError(ShoptabError):
    """
    422-level business rule violation.

    Stock policy, credit limit, invalid status transition, edits on an order
    that is no longer modifiable. `details` carries what the caller needs to act
    (e.g. required vs available credit).
    """
    status_code = 422
