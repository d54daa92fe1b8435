# Overview: Domain error kinds shared by services and routes.

"""
Document Lifecycle Errors

WHY: Every service operation either returns the mutated entity or raises
exactly one of these. Routes translate them into JSON responses without
knowing which service raised them.

ERROR KINDS:
- NOT_FOUND: Entity absent OR owned by another tenant (indistinguishable)
- INVALID_STATE: Operation not allowed in the current status
- EMPTY_DOCUMENT: Issue/send/convert attempted with zero line items
- EXPIRED: Conversion attempted after valid_until
- ALREADY_CONVERTED: Source already has an invoice
- VALIDATION_ERROR: Malformed item, payment or payload
- CONFLICT: Storage-level race that survived retries
- INTERNAL_ERROR: Anything else (details never exposed to the caller)
"""

from __future__ import annotations


class DocumentError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(DocumentError):
    """Entity does not exist in the caller's tenant."""
    code = "NOT_FOUND"
    http_status = 404


class InvalidStateError(DocumentError):
    """Operation not permitted in the entity's current status."""
    code = "INVALID_STATE"
    http_status = 409

    def __init__(self, message: str, current_status: str, details: dict | None = None):
        details = dict(details or {})
        details["current_status"] = current_status
        super().__init__(message, details)
        self.current_status = current_status


class EmptyDocumentError(DocumentError):
    code = "EMPTY_DOCUMENT"
    http_status = 422


class ExpiredError(DocumentError):
    code = "EXPIRED"
    http_status = 422


class AlreadyConvertedError(DocumentError):
    code = "ALREADY_CONVERTED"
    http_status = 409


class ValidationError(DocumentError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    http_status = 400


class ConflictError(DocumentError):
    """409-level storage conflict (lock timeout, stale version, lost race)."""
    code = "CONFLICT"
    http_status = 409


class InternalError(DocumentError):
    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


def error_response(exc: DocumentError):
    """(json, status) pair for a route's except clause."""
    from flask import jsonify

    return jsonify(exc.to_dict()), exc.http_status


def internal_error_response(log_message: str):
    """Log the active exception with traceback and answer with an opaque 500."""
    from flask import current_app, jsonify

    current_app.logger.exception(log_message)
    return jsonify(InternalError().to_dict()), InternalError.http_status
