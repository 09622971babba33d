"""Document store contract, backends, and key helpers.

Folder structure:
    <namespace>/
        <unit_id>/
            chapter-<N>/
                <section>.html
            rendered.md
        checkpoints/
            <source_type>.json
"""

import logging
import os
import re
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, NamedTuple, Optional, Union
from urllib.parse import quote, unquote

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings
from diskcache import Cache

from statute.core.exceptions import StorageError
from statute.core.models import RawDocument

logger = logging.getLogger(__name__)


class StoredObject(NamedTuple):
    key: str
    size: int
    metadata: Dict[str, str]


def _to_bytes(content: Union[str, bytes]) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


def _check_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    metadata = dict(metadata or {})
    for name, value in metadata.items():
        if not isinstance(value, str):
            raise StorageError(f"Metadata value for '{name}' must be a string, got {type(value).__name__}")
    return metadata


class DocumentStore(ABC):
    """Key-value object store with flat string metadata."""

    @abstractmethod
    def put(self, key: str, content: Union[str, bytes], metadata: Optional[Dict[str, str]] = None) -> None:
        """Store content under key, overwriting any existing object."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the content under key, or None if absent."""

    @abstractmethod
    def head(self, key: str) -> Optional[StoredObject]:
        """Return size and metadata for key, or None if absent."""

    @abstractmethod
    def list(self, prefix: str) -> List[StoredObject]:
        """List objects whose key starts with prefix, sorted by key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns False if it did not exist."""


class DiskDocumentStore(DocumentStore):
    """Local document store backed by diskcache."""

    def __init__(self, directory: str):
        os.makedirs(directory, exist_ok=True)
        self.directory = directory
        self._cache = Cache(directory=directory, timeout=60)
        logger.debug(f"Disk document store at {directory}")

    def put(self, key, content, metadata=None):
        data = _to_bytes(content)
        metadata = _check_metadata(metadata)
        metadata["storedAt"] = datetime.now(timezone.utc).isoformat()
        metadata["contentLength"] = str(len(data))
        try:
            self._cache.set(key, {"content": data, "metadata": metadata})
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

    def _entry(self, key: str) -> Optional[dict]:
        try:
            return self._cache.get(key)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def get(self, key):
        entry = self._entry(key)
        return entry["content"] if entry else None

    def head(self, key):
        entry = self._entry(key)
        if not entry:
            return None
        return StoredObject(key=key, size=len(entry["content"]), metadata=dict(entry["metadata"]))

    def list(self, prefix):
        objects = []
        try:
            keys = sorted(k for k in self._cache.iterkeys() if isinstance(k, str) and k.startswith(prefix))
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to list {prefix}: {e}") from e
        for key in keys:
            stored = self.head(key)
            if stored is not None:
                objects.append(stored)
        return objects

    def delete(self, key):
        try:
            return bool(self._cache.delete(key))
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def close(self) -> None:
        self._cache.close()


class AzureBlobDocumentStore(DocumentStore):
    """Document store backed by an Azure Blob Storage container."""

    def __init__(self, connection_string: Optional[str] = None, container_name: Optional[str] = None):
        """
        Initialize the blob store.

        Args:
            connection_string: Azure Storage connection string (from env if not provided)
            container_name: Container name (from env if not provided)
        """
        self.connection_string = connection_string or os.getenv("AZURE_STORAGE_CONNECTION_STRING")
        self.container_name = container_name or os.getenv("AZURE_STORAGE_CONTAINER_NAME", "ordinances")

        if not self.connection_string:
            raise ValueError("Azure Storage connection string not found")

        self.blob_service_client = BlobServiceClient.from_connection_string(self.connection_string)
        self.container_client = self.blob_service_client.get_container_client(self.container_name)
        try:
            self.container_client.create_container()
        except ResourceExistsError:
            pass

        logger.info(
            f"Azure blob document store initialized: "
            f"{self.blob_service_client.account_name}/{self.container_name}"
        )

    @staticmethod
    def _content_type(key: str) -> str:
        for suffix, content_type in (
            (".json", "application/json"),
            (".html", "text/html"),
            (".md", "text/markdown"),
            (".txt", "text/plain"),
        ):
            if key.endswith(suffix):
                return content_type
        return "application/octet-stream"

    @staticmethod
    def _encode_metadata(metadata: Dict[str, str]) -> Dict[str, str]:
        # Blob metadata travels as HTTP headers, so values must be ASCII
        return {name: quote(value, safe=" -_.:/+@()") for name, value in metadata.items()}

    @staticmethod
    def _decode_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {name: unquote(value) for name, value in (metadata or {}).items()}

    def put(self, key, content, metadata=None):
        data = _to_bytes(content)
        metadata = _check_metadata(metadata)
        metadata["storedAt"] = datetime.now(timezone.utc).isoformat()
        metadata["contentLength"] = str(len(data))
        try:
            self.container_client.upload_blob(
                name=key,
                data=data,
                overwrite=True,
                metadata=self._encode_metadata(metadata),
                content_settings=ContentSettings(content_type=self._content_type(key)),
            )
        except AzureError as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

    def get(self, key):
        try:
            return self.container_client.download_blob(key).readall()
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def head(self, key):
        try:
            properties = self.container_client.get_blob_client(key).get_blob_properties()
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        return StoredObject(key=key, size=properties.size, metadata=self._decode_metadata(properties.metadata))

    def list(self, prefix):
        try:
            blobs = self.container_client.list_blobs(name_starts_with=prefix, include=["metadata"])
            objects = [
                StoredObject(key=b.name, size=b.size, metadata=self._decode_metadata(b.metadata))
                for b in blobs
            ]
        except AzureError as e:
            raise StorageError(f"Failed to list {prefix}: {e}") from e
        return sorted(objects, key=lambda o: o.key)

    def delete(self, key):
        try:
            self.container_client.delete_blob(key)
            return True
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e


def create_document_store(backend: Optional[str] = None) -> DocumentStore:
    """Build the configured document store backend ("disk" or "azure")."""
    from statute.settings import (
        AZURE_STORAGE_CONNECTION_STRING,
        AZURE_STORAGE_CONTAINER_NAME,
        DOCUMENT_STORE_BACKEND,
        DOCUMENT_STORE_DIR,
    )

    backend = backend or DOCUMENT_STORE_BACKEND
    if backend == "azure":
        return AzureBlobDocumentStore(AZURE_STORAGE_CONNECTION_STRING, AZURE_STORAGE_CONTAINER_NAME)
    if backend == "disk":
        return DiskDocumentStore(DOCUMENT_STORE_DIR)
    raise ValueError(f"Unknown document store backend: {backend}")


def document_key(namespace: str, unit_id: str, chapter: str, section: str) -> str:
    """Key for a raw document: <namespace>/<unit_id>/chapter-<chapter>/<section>.html"""
    return f"{namespace}/{unit_id}/chapter-{chapter}/{section}.html"


def store_document(store: DocumentStore, namespace: str, document: RawDocument) -> str:
    """Persist a raw document with flat string metadata. Returns the key."""
    key = document_key(namespace, document.unit_id, document.chapter, document.section)
    store.put(
        key,
        document.text,
        {
            "source": document.source_url,
            "dataType": "raw-document",
            "unit": document.unit_name,
            "unitId": document.unit_id,
            "chapter": document.chapter,
            "section": document.section,
            "heading": document.heading,
            "fetchedAt": document.fetched_at.isoformat(),
        },
    )
    return key


def get_document_text(
    store: DocumentStore, namespace: str, unit_id: str, chapter: str, section: str
) -> Optional[str]:
    content = store.get(document_key(namespace, unit_id, chapter, section))
    return content.decode("utf-8") if content is not None else None


def _section_sort_key(section: str):
    try:
        return (0, float(section), section)
    except ValueError:
        return (1, 0.0, section)


def list_sections(
    store: DocumentStore, namespace: str, unit_id: str, chapter: Optional[str] = None
) -> List[str]:
    """List stored section identifiers for a unit, in numeric order (1, 2, 10)."""
    prefix = f"{namespace}/{unit_id}/chapter-{chapter}/" if chapter else f"{namespace}/{unit_id}/"

    sections = []
    for stored in store.list(prefix):
        match = re.search(r"/([^/]+)\.html$", stored.key)
        if match:
            sections.append(match.group(1))

    return sorted(sections, key=_section_sort_key)


def get_storage_stats(store: DocumentStore, namespace: str, unit_id: str) -> Dict[str, object]:
    """Sections stored, total size in bytes, and chapters seen for a unit."""
    chapters = set()
    total_size = 0
    sections = 0

    for stored in store.list(f"{namespace}/{unit_id}/"):
        if not stored.key.endswith(".html"):
            continue
        sections += 1
        total_size += stored.size
        match = re.search(r"chapter-([^/]+)", stored.key)
        if match:
            chapters.add(match.group(1))

    return {
        "sections": sections,
        "total_size": total_size,
        "chapters": sorted(chapters, key=_section_sort_key),
    }
