"""
Document Store Classes for MUN Registration Application

This module implements the Repository pattern for access to the remote
document database. It provides an abstraction layer between the business
logic and the storage backend: Firestore in production and an in-memory
store for tests and local development.
"""

import copy
import operator
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2.service_account import Credentials

from .exceptions import DataAccessException, StaleCommitteeException


FIRESTORE_SCOPES = ["https://www.googleapis.com/auth/datastore"]

Filter = Tuple[str, str, Any]

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
    "array-contains": lambda value, item: isinstance(value, list) and item in value,
}


@dataclass
class Page:
    """One page of a cursor-paginated query"""
    items: List[Dict] = field(default_factory=list)
    cursor: Any = None
    has_more: bool = False


class DocumentStore(ABC):
    """
    Abstract base class for document stores

    Documents are schemaless maps keyed by a string ID. Reads return the
    document with its ID merged in under ``"id"``.
    """

    @abstractmethod
    def add(self, collection: str, data: Dict) -> str:
        """
        Add a document with a store-assigned ID

        Returns:
            The new document ID
        """

    @abstractmethod
    def get_all(self, collection: str, filters: Optional[Sequence[Filter]] = None) -> List[Dict]:
        """
        Get every document of a collection

        Args:
            collection: Collection name
            filters: Optional (field, op, value) triples, all of which must match
        """

    @abstractmethod
    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        """Get one document, or None if it doesn't exist"""

    @abstractmethod
    def update(self, collection: str, doc_id: str, data: Dict) -> None:
        """
        Merge fields into an existing document

        Raises:
            DataAccessException: If the document doesn't exist
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document"""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict) -> None:
        """Create or overwrite a document with a caller-assigned ID"""

    @abstractmethod
    def get_page(
        self,
        collection: str,
        page_size: int = 9,
        cursor: Any = None,
        order_field: str = "createdAt",
        direction: str = "desc",
        filters: Optional[Sequence[Filter]] = None,
    ) -> Page:
        """
        Get one page of an ordered query

        Args:
            collection: Collection name
            page_size: Maximum number of documents in the page
            cursor: Cursor returned with the previous page (a document ID)
            order_field: Field to order by
            direction: 'asc' or 'desc'
            filters: Optional (field, op, value) triples

        Returns:
            Page with the documents, the cursor for the next page and
            whether more documents follow
        """

    @abstractmethod
    def update_if_revision(
        self, collection: str, doc_id: str, data: Dict, expected_revision: int
    ) -> int:
        """
        Merge fields into a document only if its revision is unchanged

        Returns:
            The new revision

        Raises:
            StaleCommitteeException: If the stored revision differs
            DataAccessException: If the document doesn't exist
        """


def _matches(document: Dict, filters: Optional[Sequence[Filter]]) -> bool:
    for field_name, op, value in filters or ():
        if op not in _OPERATORS:
            raise DataAccessException("query", f"Unsupported filter operator '{op}'")
        if field_name not in document:
            return False
        if not _OPERATORS[op](document[field_name], value):
            return False
    return True


class InMemoryDocumentStore(DocumentStore):
    """
    In-memory document store implementation

    Used by the test suite and by the development app factory. Documents
    are deep-copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self, initial_data: Optional[Dict[str, Dict[str, Dict]]] = None):
        """
        Initialize in-memory store

        Args:
            initial_data: Optional {collection: {doc_id: document}} seed data
        """
        self._data: Dict[str, Dict[str, Dict]] = copy.deepcopy(initial_data or {})
        self._lock = threading.RLock()

    def _collection(self, collection: str) -> Dict[str, Dict]:
        return self._data.setdefault(collection, {})

    @staticmethod
    def _with_id(doc_id: str, document: Dict) -> Dict:
        return {"id": doc_id, **copy.deepcopy(document)}

    def add(self, collection: str, data: Dict) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._collection(collection)[doc_id] = copy.deepcopy(data)
        return doc_id

    def get_all(self, collection: str, filters: Optional[Sequence[Filter]] = None) -> List[Dict]:
        with self._lock:
            return [
                self._with_id(doc_id, document)
                for doc_id, document in self._collection(collection).items()
                if _matches(document, filters)
            ]

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        with self._lock:
            document = self._collection(collection).get(doc_id)
            return self._with_id(doc_id, document) if document is not None else None

    def update(self, collection: str, doc_id: str, data: Dict) -> None:
        with self._lock:
            documents = self._collection(collection)
            if doc_id not in documents:
                raise DataAccessException("update", f"No document '{collection}/{doc_id}'")
            documents[doc_id].update(copy.deepcopy(data))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._collection(collection).pop(doc_id, None)

    def set(self, collection: str, doc_id: str, data: Dict) -> None:
        with self._lock:
            self._collection(collection)[doc_id] = copy.deepcopy(data)

    def get_page(
        self,
        collection: str,
        page_size: int = 9,
        cursor: Any = None,
        order_field: str = "createdAt",
        direction: str = "desc",
        filters: Optional[Sequence[Filter]] = None,
    ) -> Page:
        ordered = sorted(
            (doc for doc in self.get_all(collection, filters) if order_field in doc),
            key=lambda doc: (doc[order_field], doc["id"]),
            reverse=direction == "desc"
        )
        start = 0
        if cursor is not None:
            ids = [doc["id"] for doc in ordered]
            start = ids.index(cursor) + 1 if cursor in ids else len(ids)

        window = ordered[start:start + page_size + 1]
        has_more = len(window) > page_size
        items = window[:page_size]
        return Page(
            items=items,
            cursor=items[-1]["id"] if items else None,
            has_more=has_more
        )

    def update_if_revision(
        self, collection: str, doc_id: str, data: Dict, expected_revision: int
    ) -> int:
        with self._lock:
            documents = self._collection(collection)
            if doc_id not in documents:
                raise DataAccessException("update", f"No document '{collection}/{doc_id}'")
            current = int(documents[doc_id].get("revision") or 0)
            if current != expected_revision:
                raise StaleCommitteeException(doc_id, expected_revision, current)
            documents[doc_id].update(copy.deepcopy(data))
            documents[doc_id]["revision"] = current + 1
            return current + 1

    def clear(self) -> None:
        """Clear all data from memory"""
        with self._lock:
            self._data.clear()


class FirestoreDocumentStore(DocumentStore):
    """
    Firestore-backed document store

    Provider errors are wrapped in DataAccessException so callers only
    deal with the application's exception hierarchy.
    """

    def __init__(self, client: firestore.Client):
        """
        Initialize Firestore store

        Args:
            client: Authenticated Firestore client
        """
        self.client = client

    @classmethod
    def from_service_account(cls, service_account_info: Dict, project_id: str = None) -> 'FirestoreDocumentStore':
        """
        Build a store from service account credentials

        Args:
            service_account_info: Parsed service account JSON
            project_id: Optional project, defaults to the account's project
        """
        creds = Credentials.from_service_account_info(service_account_info, scopes=FIRESTORE_SCOPES)
        client = firestore.Client(
            project=project_id or service_account_info.get("project_id"),
            credentials=creds
        )
        return cls(client)

    def _query(self, collection: str, filters: Optional[Sequence[Filter]]):
        query = self.client.collection(collection)
        for field_name, op, value in filters or ():
            query = query.where(filter=FieldFilter(field_name, op, value))
        return query

    @staticmethod
    def _snapshot_to_dict(snapshot) -> Dict:
        return {"id": snapshot.id, **(snapshot.to_dict() or {})}

    def add(self, collection: str, data: Dict) -> str:
        try:
            _, ref = self.client.collection(collection).add(data)
            return ref.id
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("add", f"{collection}: {e}")

    def get_all(self, collection: str, filters: Optional[Sequence[Filter]] = None) -> List[Dict]:
        try:
            return [self._snapshot_to_dict(snap) for snap in self._query(collection, filters).stream()]
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("get_all", f"{collection}: {e}")

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        try:
            snapshot = self.client.collection(collection).document(doc_id).get()
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("get_by_id", f"{collection}/{doc_id}: {e}")
        return self._snapshot_to_dict(snapshot) if snapshot.exists else None

    def update(self, collection: str, doc_id: str, data: Dict) -> None:
        try:
            self.client.collection(collection).document(doc_id).update(data)
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("update", f"{collection}/{doc_id}: {e}")

    def delete(self, collection: str, doc_id: str) -> None:
        try:
            self.client.collection(collection).document(doc_id).delete()
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("delete", f"{collection}/{doc_id}: {e}")

    def set(self, collection: str, doc_id: str, data: Dict) -> None:
        try:
            self.client.collection(collection).document(doc_id).set(data)
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("set", f"{collection}/{doc_id}: {e}")

    def get_page(
        self,
        collection: str,
        page_size: int = 9,
        cursor: Any = None,
        order_field: str = "createdAt",
        direction: str = "desc",
        filters: Optional[Sequence[Filter]] = None,
    ) -> Page:
        order = firestore.Query.DESCENDING if direction == "desc" else firestore.Query.ASCENDING
        query = self._query(collection, filters).order_by(order_field, direction=order)
        try:
            if cursor is not None:
                # Cursors are document IDs; Firestore resumes after the snapshot
                last = self.client.collection(collection).document(cursor).get()
                query = query.start_after(last)
            snapshots = list(query.limit(page_size + 1).stream())
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("get_page", f"{collection}: {e}")

        has_more = len(snapshots) > page_size
        snapshots = snapshots[:page_size]
        return Page(
            items=[self._snapshot_to_dict(snap) for snap in snapshots],
            cursor=snapshots[-1].id if snapshots else None,
            has_more=has_more
        )

    def update_if_revision(
        self, collection: str, doc_id: str, data: Dict, expected_revision: int
    ) -> int:
        ref = self.client.collection(collection).document(doc_id)

        @firestore.transactional
        def apply(transaction) -> int:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise DataAccessException("update", f"No document '{collection}/{doc_id}'")
            current = int((snapshot.to_dict() or {}).get("revision") or 0)
            if current != expected_revision:
                raise StaleCommitteeException(doc_id, expected_revision, current)
            transaction.update(ref, {**data, "revision": current + 1})
            return current + 1

        try:
            return apply(self.client.transaction())
        except google_exceptions.GoogleAPIError as e:
            raise DataAccessException("update_if_revision", f"{collection}/{doc_id}: {e}")


class RepositoryFactory:
    """
    Factory class for creating document store instances
    """

    @staticmethod
    def create_memory_store(initial_data: Optional[Dict] = None) -> InMemoryDocumentStore:
        return InMemoryDocumentStore(initial_data)

    @staticmethod
    def create_firestore_store(service_account_info: Dict, project_id: str = None) -> FirestoreDocumentStore:
        return FirestoreDocumentStore.from_service_account(service_account_info, project_id)

    @staticmethod
    def create_store(store_type: str, **kwargs) -> DocumentStore:
        """
        Create a document store based on type

        Args:
            store_type: Type of store ('firestore' or 'memory')
            **kwargs: Additional arguments for store creation

        Returns:
            DocumentStore instance

        Raises:
            ValueError: If the store type is not supported
        """
        if store_type.lower() == 'firestore':
            if not kwargs.get('service_account_info'):
                raise ValueError("service_account_info is required for Firestore store")
            return RepositoryFactory.create_firestore_store(
                kwargs['service_account_info'],
                kwargs.get('project_id')
            )

        elif store_type.lower() == 'memory':
            return RepositoryFactory.create_memory_store(kwargs.get('initial_data'))

        else:
            raise ValueError(f"Unsupported store type: {store_type}")
