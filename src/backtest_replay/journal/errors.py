"""Trade log error types."""


class TradePersistenceError(Exception):
    """The storage backend rejected a trade write. Local state was rolled back."""

    def __init__(self, operation: str, key: str, message: str) -> None:
        super().__init__(f"{operation} failed for {key}: {message}")
        self.operation = operation
        self.key = key
