from . import documents  # noqa: F401

__all__ = [
    "documents",
]
