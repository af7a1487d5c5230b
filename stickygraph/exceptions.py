"""Exception hierarchy for stickygraph."""


class StickyGraphError(Exception):
    """Base exception for all stickygraph errors."""


class ValidationError(StickyGraphError):
    """Missing or malformed arguments, unknown enum values."""


class NotFoundError(StickyGraphError):
    """Raised when an operation targets an entity that does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class ConstraintViolation(StickyGraphError):
    """A storage integrity constraint was violated (duplicate id, dangling reference)."""


class ProtectedEntityError(StickyGraphError):
    """Attempt to delete the default board or project."""

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"Cannot delete the default {entity}")


class EmbeddingError(StickyGraphError):
    """The embedding provider failed or timed out."""


class ConfigError(StickyGraphError):
    """Invalid configuration value."""
