"""Collection and shard bookkeeping."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from docatlas.index.storage import SQLiteStateStore
from docatlas.models import CollectionShard, DocumentCollection, IndexMetadata, utcnow

LOGGER = logging.getLogger(__name__)


def reconcile_shards(collection: DocumentCollection) -> None:
    """Make shard bookkeeping agree with the collection totals.

    A sharded collection without shards becomes unsharded; otherwise the sum
    of the shard counts wins over a disagreeing ``document_count``.
    """
    if not collection.is_sharded:
        return
    if not collection.shards:
        LOGGER.warning("Collection %s is flagged sharded but has no shards", collection.name)
        collection.is_sharded = False
        return
    shard_total = sum(shard.count for shard in collection.shards)
    if shard_total != collection.document_count:
        LOGGER.warning(
            "Collection %s: shard counts sum to %d but document count is %d; using shard total",
            collection.name,
            shard_total,
            collection.document_count,
        )
        collection.document_count = shard_total


class CollectionRegistry:
    """Records collections and their shard layout in the metadata document."""

    def __init__(self, store: SQLiteStateStore) -> None:
        self.store = store

    def register(
        self,
        name: str,
        path: str,
        *,
        shards: Optional[Sequence[CollectionShard]] = None,
        is_sharded: Optional[bool] = None,
    ) -> DocumentCollection:
        if not name or not name.strip():
            raise ValueError("Collection name required")
        shard_list = list(shards or [])
        collection = DocumentCollection(
            name=name,
            path=path,
            is_sharded=bool(shard_list) if is_sharded is None else is_sharded,
            shards=shard_list,
        )

        def apply(metadata: IndexMetadata) -> None:
            metadata.collections[name] = collection
            metadata.total_documents = sum(
                coll.document_count for coll in metadata.collections.values()
            )
            metadata.last_indexed_at = utcnow()

        self.store.update_metadata(apply)
        LOGGER.info("Registered collection: %s", name)
        return collection

    def update_stats(
        self,
        name: str,
        document_count: int,
        *,
        shards: Optional[Sequence[CollectionShard]] = None,
        is_sharded: Optional[bool] = None,
    ) -> Optional[DocumentCollection]:
        if document_count < 0:
            raise ValueError("Document count must be non-negative")

        def apply(metadata: IndexMetadata) -> Optional[DocumentCollection]:
            collection = metadata.collections.get(name)
            if collection is not None:
                now = utcnow()
                collection.document_count = document_count
                collection.indexed_at = now
                collection.modified_at = now
                if shards is not None:
                    collection.shards = list(shards)
                if is_sharded is not None:
                    collection.is_sharded = is_sharded
                reconcile_shards(collection)
                metadata.last_indexed_at = now
            else:
                LOGGER.warning("Cannot update stats for unknown collection: %s", name)
            metadata.total_documents = sum(
                coll.document_count for coll in metadata.collections.values()
            )
            return collection

        collection = self.store.update_metadata(apply)
        LOGGER.debug("Updated stats for collection: %s", name)
        return collection

    def list(self) -> List[DocumentCollection]:
        return list(self.store.load_metadata().collections.values())

    def get(self, name: str) -> Optional[DocumentCollection]:
        return self.store.load_metadata().collections.get(name)

    def total_documents(self) -> int:
        return self.store.load_metadata().total_documents
