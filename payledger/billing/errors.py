class BillingError(Exception):
    """Base class for payment reconciliation failures."""


class InvalidSignature(BillingError):
    """Webhook body could not be authenticated. Never carries payload details."""


class ResolutionError(BillingError):
    """A required local id could not be derived from the event."""


class UserResolutionFailed(ResolutionError):
    pass


class PlanResolutionFailed(ResolutionError):
    pass


class BenefitsNotFound(BillingError):
    """Plan row or its benefits are missing while credits must be granted."""


class InsufficientCredits(BillingError):
    def __init__(self, requested: int, available: int):
        super().__init__(f"Insufficient credits: requested {requested}, available {available}")
        self.requested = requested
        self.available = available
