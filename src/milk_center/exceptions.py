"""Domain exceptions raised by the Milk Center business layer."""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced customer, product, supplier, or record is unknown."""


__all__ = ["BusinessRuleViolation", "MissingReferenceError"]
