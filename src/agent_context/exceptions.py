"""Agent context exception classes."""


class AgentContextError(Exception):
    """Base exception for the context assembly pipeline."""

    pass


class InvalidRecordError(AgentContextError):
    """A memory record violates its data contract."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid record field '{field}': {message}")


class CacheError(AgentContextError):
    """Context cache backend failure."""

    pass
