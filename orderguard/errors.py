class OrderGuardError(Exception):
    """Base class for guard engine errors."""


class InvalidIdentifier(OrderGuardError):
    """An identifier normalized to an empty or unusable value."""

    def __init__(self, identifier_type: str, raw_value: str):
        self.identifier_type = identifier_type
        self.raw_value = raw_value
        super().__init__(f"Invalid {identifier_type} identifier: {raw_value!r}")


class SignalUnavailable(OrderGuardError):
    """An upstream signal source failed or timed out."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(f"Signal source '{source}' unavailable" + (f": {message}" if message else ""))


class BatchChunkFailure(OrderGuardError):
    """A single order inside a batch chunk could not be scored."""

    def __init__(self, order_id: int, message: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id}: {message}")


class OrderNotFound(OrderGuardError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")
