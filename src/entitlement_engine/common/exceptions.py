"""Entitlement-Engine exception hierarchy.

``retryable`` marks failures that may succeed on redelivery or a later scan
without any change to the catalog or the payment metadata.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""

    retryable = False

    def __init__(self, message: str = "", code: str = "ENGINE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthenticationError(EngineError):
    """Raised when a webhook signature is absent, malformed, stale, or wrong."""

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(message, code="AUTHENTICATION_FAILED")


class ProductNotFoundError(EngineError):
    """Raised when the purchased product cannot be found in the catalog."""

    def __init__(self, message: str = "Product not found"):
        super().__init__(message, code="PRODUCT_NOT_FOUND")


class InvalidProductConfigurationError(EngineError):
    """Raised when a product has no usable validity policy or usage budget."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(
            message or f"Invalid product configuration: {field}",
            code="INVALID_PRODUCT_CONFIGURATION",
        )


class MissingMetadataError(EngineError):
    """Raised when a transaction lacks metadata required to provision it."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(
            message or f"Transaction metadata is missing '{field}'",
            code="MISSING_METADATA",
        )


class IdentityCreationError(EngineError):
    """Raised when a user record cannot be read or created."""

    retryable = True

    def __init__(self, message: str = "Failed to resolve user"):
        super().__init__(message, code="IDENTITY_CREATION_FAILED")


class PersistenceError(EngineError):
    """Raised when the entitlement write fails for a reason other than a duplicate."""

    retryable = True

    def __init__(self, message: str = "Failed to persist entitlement"):
        super().__init__(message, code="PERSISTENCE_ERROR")


class PaymentProviderError(EngineError):
    """Raised when the payment provider API cannot be reached or errors."""

    retryable = True

    def __init__(self, message: str = "Payment provider request failed", status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, code="PAYMENT_PROVIDER_ERROR")
