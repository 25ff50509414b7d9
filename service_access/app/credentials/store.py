"""
Credential lookup for responses that reference a stored credential by id.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import asyncpg

from shared.logging import get_logger


class CredentialStore(ABC):
    """Resolves a credential id to its raw token."""

    async def start(self):
        """Acquire resources."""

    async def stop(self):
        """Release resources."""

    @abstractmethod
    async def lookup(self, credential_id: Any) -> Optional[str]:
        ...


class InMemoryCredentialStore(CredentialStore):

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self._tokens: Dict[str, str] = {str(k): v for k, v in (tokens or {}).items()}

    def register(self, credential_id: Any, token: str):
        self._tokens[str(credential_id)] = token

    async def lookup(self, credential_id: Any) -> Optional[str]:
        return self._tokens.get(str(credential_id))


class PostgreSQLCredentialStore(CredentialStore):
    """Reads tokens from the issuer's ``credentials`` table."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("access.credentials.store")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        self.pool = await asyncpg.create_pool(self.dsn, min_size=1, max_size=5, command_timeout=30)

    async def stop(self):
        if self.pool:
            await self.pool.close()

    async def lookup(self, credential_id: Any) -> Optional[str]:
        async with self.pool.acquire() as conn:
            token = await conn.fetchval(
                "SELECT vc_jwt FROM credentials WHERE id::text = $1",
                str(credential_id)
            )
        if token is None:
            self.logger.info("Credential not found", credential_id=str(credential_id))
        return token
