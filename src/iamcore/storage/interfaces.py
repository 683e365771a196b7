from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

Document = Dict[str, Any]
Filter = Mapping[str, Any]


class DocumentStore(ABC):
    """Async document storage contract used by repositories and the policy store.

    Filters are mappings of field to either a literal (equality) or an operator
    document: ``{"$in": [...]}``, ``{"$nin": [...]}``, ``{"$ne": value}``.
    Updates are plain ``{field: value}`` assignments.
    """

    @abstractmethod
    async def find(self, collection: str, filter: Filter, limit: Optional[int] = None) -> List[Document]:
        raise NotImplementedError

    @abstractmethod
    async def find_one(self, collection: str, filter: Filter) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    async def count(self, collection: str, filter: Filter) -> int:
        raise NotImplementedError

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> Document:
        raise NotImplementedError

    async def insert_many(self, collection: str, documents: List[Document]) -> List[Document]:
        return [await self.insert_one(collection, d) for d in documents]

    @abstractmethod
    async def update_one(self, collection: str, filter: Filter, changes: Mapping[str, Any]) -> int:
        raise NotImplementedError

    @abstractmethod
    async def update_many(self, collection: str, filter: Filter, changes: Mapping[str, Any]) -> int:
        raise NotImplementedError

    @abstractmethod
    async def delete_one(self, collection: str, filter: Filter) -> int:
        raise NotImplementedError

    @abstractmethod
    async def delete_many(self, collection: str, filter: Filter) -> int:
        raise NotImplementedError


__all__ = ["DocumentStore", "Document", "Filter"]
