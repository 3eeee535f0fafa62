class RelayError(Exception):
    """Base exception for pipeline errors."""

    retryable = True


class AIError(RelayError):
    """Raised when the AI backend cannot produce a usable answer."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"AI service error ({status_code}): {detail}")


class DeliveryError(RelayError):
    """Raised when a message could not be handed to WhatsApp."""

    def __init__(self, status_code: int, detail: str, retryable: bool = True):
        self.status_code = status_code
        self.detail = detail
        self.retryable = retryable
        super().__init__(f"WhatsApp API error ({status_code}): {detail}")


class JobRescheduled(RelayError):
    """The job's work was handed to a new, delayed job; neither success nor failure."""


class DeliveryRescheduled(JobRescheduled):
    def __init__(self, recipient_id: str, delay: float):
        self.recipient_id = recipient_id
        self.delay = delay
        self.status_code = 429
        super().__init__(f"Rate limited sending to {recipient_id}, rescheduled in {delay:.0f}s")
