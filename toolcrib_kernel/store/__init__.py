"""Document store abstraction and backends."""

from toolcrib_kernel.store.base import (
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    Committed,
    DocumentChange,
    DocumentRef,
    DocumentStore,
    Subscription,
    Transaction,
)
from toolcrib_kernel.store.memory import InMemoryDocumentStore
from toolcrib_kernel.store.sql import SqlDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "ArrayUnion",
    "ArrayRemove",
    "Committed",
    "DocumentChange",
    "DocumentRef",
    "DocumentStore",
    "Subscription",
    "Transaction",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
