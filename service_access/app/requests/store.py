"""
Access request store contract and in-memory implementation.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.errors import ConflictError, NotFoundError
from .models import AccessRequest, AccessRequestStatus

Mutator = Callable[[AccessRequest], AccessRequest]


class AccessRequestStore(ABC):
    """Logical read/write contract on the AccessRequest entity.

    ``update`` is a compare-and-swap: the mutator runs against a private
    copy of the stored row, and the result is written only if the row's
    ``version`` still equals ``expected_version`` (when given). The store
    assigns the new version; callers never set it.
    """

    async def start(self):
        """Acquire resources."""

    async def stop(self):
        """Release resources."""

    @abstractmethod
    async def insert(self, request: AccessRequest) -> AccessRequest:
        ...

    @abstractmethod
    async def get_by_id(self, request_id: str) -> Optional[AccessRequest]:
        ...

    @abstractmethod
    async def query_by_party(
        self,
        subject_wallet: Optional[str] = None,
        relying_party_wallet: Optional[str] = None,
        status: Optional[AccessRequestStatus] = None
    ) -> List[AccessRequest]:
        """Return matching requests, newest first."""

    @abstractmethod
    async def update(
        self,
        request_id: str,
        mutator: Mutator,
        expected_version: Optional[int] = None
    ) -> AccessRequest:
        ...

    async def health_check(self) -> bool:
        return True


class InMemoryAccessRequestStore(AccessRequestStore):
    """Process-local store guarded by one lock per request id."""

    def __init__(self):
        self.logger = get_logger("access.store.memory")
        self._rows: Dict[str, AccessRequest] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, request_id: str) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = self._locks[request_id] = asyncio.Lock()
        return lock

    async def insert(self, request: AccessRequest) -> AccessRequest:
        async with self._lock_for(request.id):
            if request.id in self._rows:
                raise ConflictError("Access request already exists", {"id": request.id})
            stored = copy.deepcopy(request)
            stored.version = 1
            self._rows[request.id] = stored

        self.logger.debug("Access request inserted", id=request.id)
        return copy.deepcopy(stored)

    async def get_by_id(self, request_id: str) -> Optional[AccessRequest]:
        row = self._rows.get(request_id)
        return copy.deepcopy(row) if row else None

    async def query_by_party(
        self,
        subject_wallet: Optional[str] = None,
        relying_party_wallet: Optional[str] = None,
        status: Optional[AccessRequestStatus] = None
    ) -> List[AccessRequest]:
        rows = [
            row for row in self._rows.values()
            if (subject_wallet is None or row.subject_wallet == subject_wallet)
            and (relying_party_wallet is None or row.relying_party_wallet == relying_party_wallet)
            and (status is None or row.status == status)
        ]
        rows.sort(key=lambda row: row.created_at, reverse=True)
        return [copy.deepcopy(row) for row in rows]

    async def update(
        self,
        request_id: str,
        mutator: Mutator,
        expected_version: Optional[int] = None
    ) -> AccessRequest:
        async with self._lock_for(request_id):
            current = self._rows.get(request_id)
            if current is None:
                raise NotFoundError(details={"id": request_id})

            if expected_version is not None and current.version != expected_version:
                raise ConflictError(details={
                    "id": request_id,
                    "expected_version": expected_version,
                    "actual_version": current.version
                })

            updated = mutator(copy.deepcopy(current))
            updated.id = request_id
            updated.version = current.version + 1
            self._rows[request_id] = copy.deepcopy(updated)

        return copy.deepcopy(updated)
