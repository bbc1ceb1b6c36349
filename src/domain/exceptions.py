

class BookingPipelineError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking payment pipeline.
    """


class InvalidStateTransitionError(BookingPipelineError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class BookingNotFoundError(BookingPipelineError):
    """Raised when a booking cannot be located by id or order number."""


class PayloadValidationError(BookingPipelineError):
    """Raised when an inbound payload is malformed or incomplete."""


class ChecksumMismatchError(BookingPipelineError):
    """Raised when a gateway notification carries a checksum we did not compute."""


class TicketIssuanceError(BookingPipelineError):
    """Raised when tickets cannot be materialised for a completed booking."""


class GatewayConfigurationError(BookingPipelineError):
    """Raised when merchant credentials or the endpoint are not configured."""


class GatewayError(BookingPipelineError):
    """
    Raised when the payment gateway cannot produce a payment URL.

    Carries the gateway's own message and codes where it supplied them.
    The booking is always left PENDING, so every gateway error is retryable
    by re-invoking checkout.
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        status: int | None = None,
        http_status: int = 400,
        retryable: bool = True,
    ):
        self.message = message
        self.code = code
        self.status = status
        self.http_status = http_status
        self.retryable = retryable
        super().__init__(message)
