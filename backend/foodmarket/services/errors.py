"""Error taxonomy shared by the cart, checkout and order services.

Routers translate these into HTTP responses through ``status_code``.
``PaymentNotReady`` and ``InvalidTransition`` are expected business
outcomes and are logged as events, never as errors.
"""


class MarketplaceError(Exception):
    status_code = 400


class ValidationError(MarketplaceError):
    status_code = 422


class NotFound(MarketplaceError):
    status_code = 404


class EmptyCart(MarketplaceError):
    status_code = 400


class InvalidState(MarketplaceError):
    """Cart belongs to another restaurant and replacement was not requested."""

    status_code = 409


class PaymentNotReady(MarketplaceError):
    status_code = 409


class InvalidTransition(MarketplaceError):
    status_code = 409


class Forbidden(MarketplaceError):
    status_code = 403


class Conflict(MarketplaceError):
    """Lost an idempotency or compare-and-swap race, or a lock wait timed out."""

    status_code = 409


class UpstreamUnavailable(MarketplaceError):
    status_code = 502
