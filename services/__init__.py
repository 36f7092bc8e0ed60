"""Service modules for the emergency dispatch application."""

__all__ = [
    "dispatch",
    "dispatch_client",
]
