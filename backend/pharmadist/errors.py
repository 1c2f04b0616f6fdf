# Overview: Domain error taxonomy shared by services and routes.

"""
Every failure a service can report to a caller is one of these.

Routes roll back the session and turn the exception into a JSON body with
error_response(). InsufficientStockInCityError is the structured shortage
report the frontend renders per product; its body is returned verbatim.
"""
from __future__ import annotations

from .quantities import format_quantity


class DomainError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500
    code: str | None = None

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body: dict = {"error": self.message}
        if self.code:
            body["code"] = self.code
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(DomainError):
    """Referenced entity is missing or belongs to another tenant."""
    status_code = 404


class ForbiddenError(DomainError):
    """Actor is outside the scope (branch city) the operation requires."""
    status_code = 403


class ConflictError(DomainError):
    """409-level business rule conflict (version mismatch, duplicates, state)."""
    status_code = 409


class BatchExpiredError(ConflictError):
    code = "BATCH_EXPIRED"


class InsufficientStockInCityError(ConflictError):
    """
    Raised when one or more lines cannot be covered by stock in the city.

    items: list of dicts with product_id, product_name, required, available
    and, when the line came in presentations, presentation_id and
    presentation_quantity.
    """
    code = "INSUFFICIENT_STOCK_IN_CITY"

    def __init__(self, city: str, items: list[dict], message: str | None = None):
        super().__init__(message or f"Insufficient stock in {city}")
        self.city = city
        self.items = items

    def to_dict(self) -> dict:
        items = []
        for item in self.items:
            row = dict(item)
            row["required"] = format_quantity(row["required"])
            row["available"] = format_quantity(row["available"])
            if row.get("presentation_quantity") is not None:
                row["presentation_quantity"] = format_quantity(row["presentation_quantity"])
            items.append(row)
        return {
            "error": self.message,
            "code": self.code,
            "city": self.city,
            "items": items,
        }


def error_response(exc: DomainError):
    """Flask-style (body, status) tuple for a domain error."""
    return exc.to_dict(), exc.status_code
