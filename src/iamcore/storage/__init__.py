"""Document storage: contract, in-memory backend, tenant scoping, IAM loading."""

from .interfaces import Document, DocumentStore, Filter
from .memory import InMemoryDocumentStore
from .policy_store import PolicyStore
from .scoped import UNSCOPED, ScopeConfig, ScopedRepository

__all__ = [
    "Document",
    "DocumentStore",
    "Filter",
    "InMemoryDocumentStore",
    "PolicyStore",
    "ScopeConfig",
    "ScopedRepository",
    "UNSCOPED",
]
