"""
Document store abstraction.

Documents are addressed by slash-separated paths that alternate collection
and document ids, e.g. ``users/{id}`` or ``users/{id}/receivedBouquets/{bouquetId}``.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .errors import DocumentNotFoundError, RemoteStoreError

logger = logging.getLogger(__name__)


def _segments(path: str) -> List[str]:
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments:
        raise ValueError("Empty document path")
    return segments


def split_document_path(path: str) -> Tuple[str, str]:
    """``users/u1/receivedBouquets/b1`` -> (``users/u1/receivedBouquets``, ``b1``)"""
    segments = _segments(path)
    if len(segments) % 2:
        raise ValueError(f"'{path}' is not a document path")
    return "/".join(segments[:-1]), segments[-1]


def split_collection_path(path: str) -> Tuple[List[str], Optional[str]]:
    """
    Break a collection path into its collection names and the id of the
    document it hangs off (None for a top-level collection).
    """
    segments = _segments(path)
    if len(segments) % 2 == 0:
        raise ValueError(f"'{path}' is not a collection path")
    names = segments[0::2]
    parent_id = segments[-2] if len(segments) > 1 else None
    return names, parent_id


def document_path(*segments: str) -> str:
    return "/".join(segments)


class DocumentStore(ABC):
    """Minimal async document API used by the sync client"""

    @abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Fetch a document, or None when it does not exist"""

    @abstractmethod
    async def set(self, path: str, data: Dict[str, Any]):
        """Create or fully overwrite a document"""

    @abstractmethod
    async def update(self, path: str, fields: Dict[str, Any]):
        """Merge ``fields`` into an existing document; raises DocumentNotFoundError otherwise"""

    @abstractmethod
    async def query(self, collection_path: str, order_by: Optional[str] = None,
                    descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """List documents of a collection, optionally ordered by a field"""

    @abstractmethod
    async def ping(self) -> bool:
        """True when the store answers"""

    async def close(self):
        pass


def _sort_key(field: str):
    def key(doc: Dict[str, Any]):
        value = doc.get(field)
        # Documents missing the field sort as smallest
        return (value is not None, value if value is not None else 0)
    return key


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store for tests and offline runs"""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.offline = False

    def _check_online(self, operation: str):
        if self.offline:
            raise RemoteStoreError(operation, ConnectionError("store unreachable"))

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        self._check_online("get")
        collection, doc_id = split_document_path(path)
        doc = self.collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, path: str, data: Dict[str, Any]):
        self._check_online("set")
        collection, doc_id = split_document_path(path)
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def update(self, path: str, fields: Dict[str, Any]):
        self._check_online("update")
        collection, doc_id = split_document_path(path)
        doc = self.collections.get(collection, {}).get(doc_id)
        if doc is None:
            raise DocumentNotFoundError(path)
        doc.update(copy.deepcopy(fields))

    async def query(self, collection_path: str, order_by: Optional[str] = None,
                    descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        self._check_online("query")
        split_collection_path(collection_path)
        docs = [copy.deepcopy(d) for d in self.collections.get(collection_path.strip("/"), {}).values()]
        if order_by:
            docs.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def ping(self) -> bool:
        return not self.offline

    def clear(self):
        self.collections.clear()
