"""In-memory DocumentStore.

Default backend for tests and single-process deployments. Documents are
deep-copied on the way in and out so callers never share state with the store.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping, Optional
from uuid import uuid4

from .interfaces import Document, DocumentStore, Filter


def _match_value(actual: Any, expected: Any) -> bool:
    if isinstance(expected, Mapping) and expected and all(str(k).startswith("$") for k in expected):
        for op, operand in expected.items():
            if op == "$in":
                if actual not in operand:
                    return False
            elif op == "$nin":
                if actual in operand:
                    return False
            elif op == "$ne":
                if actual == operand:
                    return False
            elif op == "$eq":
                if actual != operand:
                    return False
            else:
                raise ValueError(f"Unsupported filter operator: {op}")
        return True
    return actual == expected


def matches(document: Mapping[str, Any], filter: Filter) -> bool:
    return all(_match_value(document.get(field), expected) for field, expected in filter.items())


class InMemoryDocumentStore(DocumentStore):
    """Dict-of-lists store; ``seed`` preloads collections (documents are copied)."""

    def __init__(self, seed: Optional[Mapping[str, list[Document]]] = None) -> None:
        self._collections: dict[str, list[Document]] = {}
        for collection, documents in (seed or {}).items():
            for document in documents:
                stored = copy.deepcopy(document)
                stored.setdefault("_id", uuid4().hex)
                self._docs(collection).append(stored)

    def _docs(self, collection: str) -> list[Document]:
        return self._collections.setdefault(collection, [])

    async def find(self, collection: str, filter: Filter, limit: Optional[int] = None) -> list[Document]:
        found = [copy.deepcopy(d) for d in self._docs(collection) if matches(d, filter)]
        return found[:limit] if limit is not None else found

    async def find_one(self, collection: str, filter: Filter) -> Optional[Document]:
        for doc in self._docs(collection):
            if matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def count(self, collection: str, filter: Filter) -> int:
        return sum(1 for d in self._docs(collection) if matches(d, filter))

    async def insert_one(self, collection: str, document: Document) -> Document:
        stored = copy.deepcopy(document)
        stored.setdefault("_id", uuid4().hex)
        self._docs(collection).append(stored)
        return copy.deepcopy(stored)

    async def update_one(self, collection: str, filter: Filter, changes: Mapping[str, Any]) -> int:
        for doc in self._docs(collection):
            if matches(doc, filter):
                doc.update(copy.deepcopy(dict(changes)))
                return 1
        return 0

    async def update_many(self, collection: str, filter: Filter, changes: Mapping[str, Any]) -> int:
        updated = 0
        for doc in self._docs(collection):
            if matches(doc, filter):
                doc.update(copy.deepcopy(dict(changes)))
                updated += 1
        return updated

    async def delete_one(self, collection: str, filter: Filter) -> int:
        docs = self._docs(collection)
        for index, doc in enumerate(docs):
            if matches(doc, filter):
                del docs[index]
                return 1
        return 0

    async def delete_many(self, collection: str, filter: Filter) -> int:
        docs = self._docs(collection)
        kept = [d for d in docs if not matches(d, filter)]
        self._collections[collection] = kept
        return len(docs) - len(kept)


__all__ = ["InMemoryDocumentStore", "matches"]
