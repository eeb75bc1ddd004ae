"""
Domain error taxonomy.

Every error carries the HTTP status it maps to so the API layer can
render it without a lookup table.
"""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    """Missing or malformed input: bad coordinates, enum values, amounts."""

    status_code = 400


class AuthenticationError(MarketplaceError):
    status_code = 401


class AuthorizationError(MarketplaceError):
    """Caller is known but may not act on this resource."""

    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    """The write would violate a uniqueness or state-machine rule."""

    status_code = 409
