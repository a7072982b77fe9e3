"""
Exceptions
==========

Error taxonomy for the validation pipeline. Validation findings are data
(``ValidationIssue``); these exceptions cover malformed input and failing
external collaborators only.
"""


class SqlValidationError(Exception):
    """Base class for pipeline errors."""


class MalformedInputError(SqlValidationError):
    """Request rejected before the pipeline starts."""


class ExternalServiceError(SqlValidationError):
    """An external collaborator (schema catalog, generator, engine) failed."""

    def __init__(self, service: str, message: str, retryable: bool = True) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message
        self.retryable = retryable
