"""
PostgreSQL persistence for access requests.
"""

import json
from typing import Any, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import ConflictError, ExternalServiceError, NotFoundError
from .models import AccessRequest, AccessRequestNotes, AccessRequestStatus
from .store import AccessRequestStore, Mutator
from ..conditions.parser import condition_to_dict, parse_condition


async def _init_connection(conn):
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


class PostgreSQLAccessRequestStore(AccessRequestStore):
    """Access request store on PostgreSQL.

    Condition, notes and response payload live in JSONB columns.
    Updates are compare-and-swap on the ``version`` column.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("access.store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30,
                init=_init_connection
            )
            await self._create_tables()
            self.logger.info("PostgreSQL persistence started")

        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise ExternalServiceError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS access_requests (
                    id VARCHAR(64) PRIMARY KEY,
                    subject_wallet VARCHAR(255) NOT NULL,
                    relying_party_wallet VARCHAR(255) NOT NULL,
                    claim VARCHAR(255) NOT NULL,
                    condition JSONB NOT NULL,
                    status VARCHAR(32) NOT NULL,
                    notes JSONB NOT NULL,
                    response_payload JSONB,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    responded_at TIMESTAMP WITH TIME ZONE,
                    version INTEGER NOT NULL DEFAULT 1
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_access_requests_subject
                    ON access_requests(subject_wallet, status);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_access_requests_relying_party
                    ON access_requests(relying_party_wallet, status);
            """)

    async def insert(self, request: AccessRequest) -> AccessRequest:
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow("""
                    INSERT INTO access_requests (
                        id, subject_wallet, relying_party_wallet, claim, condition, status,
                        notes, response_payload, created_at, updated_at, responded_at, version
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, 1)
                    RETURNING *
                """, *self._row_values(request))
            except asyncpg.UniqueViolationError:
                raise ConflictError("Access request already exists", {"id": request.id})

        self.logger.info("Access request saved", id=request.id)
        return self._row_to_request(row)

    async def get_by_id(self, request_id: str) -> Optional[AccessRequest]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM access_requests WHERE id = $1", request_id)
        return self._row_to_request(row) if row else None

    async def query_by_party(
        self,
        subject_wallet: Optional[str] = None,
        relying_party_wallet: Optional[str] = None,
        status: Optional[AccessRequestStatus] = None
    ) -> List[AccessRequest]:
        clauses: List[str] = []
        params: List[Any] = []

        if subject_wallet is not None:
            params.append(subject_wallet)
            clauses.append(f"subject_wallet = ${len(params)}")
        if relying_party_wallet is not None:
            params.append(relying_party_wallet)
            clauses.append(f"relying_party_wallet = ${len(params)}")
        if status is not None:
            params.append(status.value)
            clauses.append(f"status = ${len(params)}")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT * FROM access_requests {where} ORDER BY created_at DESC",
                *params
            )
        return [self._row_to_request(row) for row in rows]

    async def update(
        self,
        request_id: str,
        mutator: Mutator,
        expected_version: Optional[int] = None
    ) -> AccessRequest:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM access_requests WHERE id = $1", request_id)
            if row is None:
                raise NotFoundError(details={"id": request_id})

            current = self._row_to_request(row)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(details={
                    "id": request_id,
                    "expected_version": expected_version,
                    "actual_version": current.version
                })

            updated = mutator(current)
            updated.id = request_id
            result = await conn.fetchrow("""
                UPDATE access_requests SET
                    status = $2,
                    notes = $3,
                    response_payload = $4,
                    updated_at = $5,
                    responded_at = $6,
                    version = version + 1
                WHERE id = $1 AND version = $7
                RETURNING *
            """,
                request_id, updated.status.value, updated.notes.to_dict(), updated.response_payload,
                updated.updated_at, updated.responded_at, current.version
            )

        if result is None:
            # Row changed between our read and write
            raise ConflictError(details={"id": request_id, "expected_version": current.version})

        return self._row_to_request(result)

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (OSError, asyncpg.PostgresError):
            return False

    def _row_values(self, request: AccessRequest) -> tuple:
        return (
            request.id,
            request.subject_wallet,
            request.relying_party_wallet,
            request.claim,
            condition_to_dict(request.condition),
            request.status.value,
            request.notes.to_dict(),
            request.response_payload,
            request.created_at,
            request.updated_at,
            request.responded_at,
        )

    def _row_to_request(self, row) -> AccessRequest:
        """Convert database row to AccessRequest object."""
        return AccessRequest(
            id=row["id"],
            subject_wallet=row["subject_wallet"],
            relying_party_wallet=row["relying_party_wallet"],
            claim=row["claim"],
            condition=parse_condition(row["condition"]),
            status=AccessRequestStatus(row["status"]),
            notes=AccessRequestNotes.from_dict(row["notes"]),
            response_payload=row["response_payload"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            responded_at=row["responded_at"],
            version=row["version"]
        )
