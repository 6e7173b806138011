from __future__ import annotations

from uuid import UUID


class SubscriptionError(Exception):
    pass


class InvalidTierError(SubscriptionError):
    pass


class DuplicateActiveSubscriptionError(SubscriptionError):
    pass


class SubscriptionNotFoundError(SubscriptionError):
    pass


class SubscriptionForbiddenError(SubscriptionError):
    pass


class SubscriptionNotReactivatableError(SubscriptionError):
    pass


class BillingProfileMissingError(SubscriptionError):
    pass


class GatewayError(Exception):
    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class GatewayTransientError(GatewayError):
    pass


class GatewayPermanentError(GatewayError):
    pass


class ProcessorResourceMissingError(GatewayPermanentError):
    pass


class SubscriptionGatewayTransientError(SubscriptionError):
    """Processor did not answer in time; the local record stays pending."""

    def __init__(self, subscription_id: UUID) -> None:
        super().__init__(f"processor unavailable for subscription {subscription_id}")
        self.subscription_id = subscription_id


class SubscriptionGatewayPermanentError(SubscriptionError):
    def __init__(self, subscription_id: UUID, *, code: str | None) -> None:
        super().__init__(f"processor rejected subscription {subscription_id}: {code}")
        self.subscription_id = subscription_id
        self.code = code


class FeeSplitInvariantError(AssertionError):
    pass


class UnknownProcessorStatusError(ValueError):
    pass


class WebhookEventConflictError(Exception):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"webhook event {event_id} redelivered with a different payload")
        self.event_id = event_id


class WebhookPayloadError(ValueError):
    pass
