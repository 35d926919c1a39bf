# Overview: Base exception for service-layer business failures.

from __future__ import annotations


class ServiceError(Exception):
    """
    Business-rule failure raised by a service.

    status_code: HTTP status the route should answer with (400 by default)
    details: optional structured context (e.g. short stock per product)

    Each service subclasses this (InvoiceError, SafeError, ...) so callers
    can catch the failures of one component without catching the others.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.details:
            body["details"] = self.details
        return body
