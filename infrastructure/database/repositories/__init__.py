from .document_repository import DocumentFilter, DocumentRepository

__all__ = [
    "DocumentFilter",
    "DocumentRepository",
]
