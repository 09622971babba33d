from .chunking import chunk_document, chunk_documents, split_with_overlap
from .http import FetchClient
from .tokens import count_tokens

__all__ = [
    "FetchClient",
    "chunk_document",
    "chunk_documents",
    "count_tokens",
    "split_with_overlap",
]
