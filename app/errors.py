"""Typed failures raised by the resolvers and their HTTP mapping."""


class ResolverError(Exception):
    """Base class for failures that abort a block or transaction resolution."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, identifier: str = "", step: str = ""):
        super().__init__(message)
        self.message = message
        self.identifier = identifier
        self.step = step


class InvalidInputError(ResolverError):
    kind = "invalid_input"
    status_code = 400


class NotFoundError(ResolverError):
    kind = "not_found"
    status_code = 404


class UpstreamUnavailableError(ResolverError):
    kind = "upstream_unavailable"
    status_code = 502


class SignatureRecoveryError(ResolverError):
    """Sender could not be recovered from the transaction signature."""
    kind = "signature_recovery_error"
    status_code = 500


class ConsistencyError(ResolverError):
    """Receipt and block lookups disagree."""
    kind = "consistency_error"
    status_code = 500
