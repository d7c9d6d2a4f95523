"""Exceptions raised by the order configuration & submission pipeline."""

from typing import Optional


class OrderFlowError(Exception):
    """Base exception for all order pipeline errors."""

    kind = "error"

    def __init__(self, message: str, stage: Optional[int] = None):
        self.message = message
        self.stage = stage
        super().__init__(message)


class ValidationError(OrderFlowError):
    """Raised when a stage's required input is missing or invalid."""

    kind = "validation"


class PricingUnavailable(ValidationError):
    """Raised when the payment stage would be entered without a computed price."""

    kind = "pricing_unavailable"

    def __init__(self, message: str = "Price could not be calculated. Please review your t-shirt size.", stage: Optional[int] = None):
        super().__init__(message, stage)


class UploadError(OrderFlowError):
    """Raised when the artwork could not be uploaded to the fulfillment partner."""

    kind = "upload"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SubmissionError(OrderFlowError):
    """Raised when the order backend rejected the order or was unreachable."""

    kind = "submission"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StaleSubmission(OrderFlowError):
    """Raised when the user left the payment stage while a submission was running."""

    kind = "stale"
