"""
Tracked access to the document store

DataService is the only way the services layer talks to the store; each
method is wrapped by the request tracker with the collection name and the
relevant query shape as metadata.
"""

from typing import Any, Dict, List, Optional, Sequence

from .repositories import DocumentStore, Filter, Page
from .telemetry import RequestTracker

SERVICE = "firestore"


class DataService:
    """
    Document store operations with request telemetry
    """

    def __init__(self, store: DocumentStore, tracker: RequestTracker):
        self.store = store
        self.tracker = tracker

    def add(self, collection: str, data: Dict) -> str:
        return self.tracker.track(
            SERVICE, "add",
            lambda: self.store.add(collection, data),
            {"collectionName": collection}
        )

    def get_all(self, collection: str, filters: Optional[Sequence[Filter]] = None) -> List[Dict]:
        return self.tracker.track(
            SERVICE, "getAll",
            lambda: self.store.get_all(collection, filters),
            {"collectionName": collection, "constraintsCount": len(filters or ())}
        )

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        return self.tracker.track(
            SERVICE, "getById",
            lambda: self.store.get_by_id(collection, doc_id),
            {"collectionName": collection, "id": doc_id}
        )

    def update(self, collection: str, doc_id: str, data: Dict) -> None:
        self.tracker.track(
            SERVICE, "update",
            lambda: self.store.update(collection, doc_id, data),
            {"collectionName": collection, "id": doc_id}
        )

    def update_if_revision(self, collection: str, doc_id: str, data: Dict, expected_revision: int) -> int:
        return self.tracker.track(
            SERVICE, "updateIfRevision",
            lambda: self.store.update_if_revision(collection, doc_id, data, expected_revision),
            {"collectionName": collection, "id": doc_id, "expectedRevision": expected_revision}
        )

    def delete(self, collection: str, doc_id: str) -> None:
        self.tracker.track(
            SERVICE, "delete",
            lambda: self.store.delete(collection, doc_id),
            {"collectionName": collection, "id": doc_id}
        )

    def set(self, collection: str, doc_id: str, data: Dict) -> None:
        self.tracker.track(
            SERVICE, "set",
            lambda: self.store.set(collection, doc_id, data),
            {"collectionName": collection, "id": doc_id}
        )

    def get_page(
        self,
        collection: str,
        page_size: int = 9,
        cursor: Any = None,
        order_field: str = "createdAt",
        direction: str = "desc",
    ) -> Page:
        return self.tracker.track(
            SERVICE, "getPaginated",
            lambda: self.store.get_page(collection, page_size, cursor, order_field, direction),
            {
                "collectionName": collection,
                "pageSize": page_size,
                "hasCursor": cursor is not None,
                "orderByField": order_field,
                "orderDirection": direction,
            }
        )

    def get_page_filtered(
        self,
        collection: str,
        filter_field: str,
        filter_value: Any,
        page_size: int = 9,
        cursor: Any = None,
        order_field: str = "createdAt",
        direction: str = "desc",
    ) -> Page:
        filters = [(filter_field, "==", filter_value)]
        return self.tracker.track(
            SERVICE, "getPaginatedWithFilter",
            lambda: self.store.get_page(collection, page_size, cursor, order_field, direction, filters),
            {
                "collectionName": collection,
                "filterField": filter_field,
                "pageSize": page_size,
                "hasCursor": cursor is not None,
                "orderByField": order_field,
                "orderDirection": direction,
            }
        )
