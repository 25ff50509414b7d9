"""
Access service for the Access Layer.

Relying parties open access requests against a subject's wallet, challenge
the subject for a credential, and evaluate the presented credential
against the request's condition. Every state change is streamed to
subscribers over Server-Sent Events.
"""

import sys
import os
from typing import Dict, Optional

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from fastapi import Body, Query
from fastapi.responses import StreamingResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.observability import get_observability_manager

from .credentials.client import CredentialVerifier, HttpCredentialVerifier
from .credentials.store import CredentialStore, InMemoryCredentialStore, PostgreSQLCredentialStore
from .events.publisher import EventPublisher
from .events.sse import sse_event_stream
from .policies import ACCESS_POLICIES
from .requests.lifecycle import AccessRequestLifecycle
from .requests.models import (
    AccessRequestCreate, AccessRequestListResponse, AccessRequestResponse,
    AccessRequestStatus, ChallengeRequest, EvaluateRequest, RespondRequest
)
from .requests.postgres import PostgreSQLAccessRequestStore
from .requests.store import AccessRequestStore, InMemoryAccessRequestStore


class AccessService(BaseService):
    """Access service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[AccessRequestStore] = None,
        verifier: Optional[CredentialVerifier] = None,
        credential_store: Optional[CredentialStore] = None
    ):
        super().__init__("access", 8013, config or get_config("access", 8013))

        self.observability = get_observability_manager("access", self.metrics)

        postgres = self.config.store_backend == "postgres"
        self.store = store or (
            PostgreSQLAccessRequestStore(self.config.postgres_dsn) if postgres else InMemoryAccessRequestStore()
        )
        self.credential_store = credential_store or (
            PostgreSQLCredentialStore(self.config.postgres_dsn) if postgres else InMemoryCredentialStore()
        )
        self.verifier = verifier or HttpCredentialVerifier(
            self.config.credential_service_url,
            timeout=self.config.credential_service_timeout
        )
        self.publisher = EventPublisher(
            buffer_size=self.config.event_buffer_size,
            max_subscribers=self.config.max_sse_connections,
            metrics=self.metrics
        )
        self.lifecycle = AccessRequestLifecycle(
            store=self.store,
            verifier=self.verifier,
            credential_store=self.credential_store,
            publisher=self.publisher,
            metrics=self.metrics,
            retry_attempts=self.config.update_retry_attempts
        )

        @self.app.on_event("startup")
        async def _startup():
            await self.store.start()
            await self.credential_store.start()
            self.logger.info("Access service started", store_backend=self.config.store_backend)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.credential_store.stop()
            await self.store.stop()
            self.logger.info("Access service stopped")

        self._setup_access_routes()

    def _setup_access_routes(self):
        """Set up access-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "access",
                "message": "Access Layer - Access Service",
                "version": "1.0.0",
                "capabilities": ["access_requests", "credential_evaluation", "sse_events"]
            }

        @self.app.get("/access/policies")
        async def list_policies():
            """List the policy catalog."""
            return {"items": [policy.to_dict() for policy in ACCESS_POLICIES]}

        @self.app.post("/access/request", response_model=AccessRequestResponse, status_code=201)
        async def create_access_request(body: AccessRequestCreate):
            """Open an access request."""
            self.observability.trace_request(wallet=body.subject_wallet)
            request = await self.lifecycle.create(
                subject_wallet=body.subject_wallet,
                relying_party_wallet=body.relying_party_wallet,
                condition=body.condition,
                claim=body.claim,
                policy=body.policy,
                initial_message=body.message,
                policy_id=body.policy_id
            )
            self.observability.log_business_event(
                "access_request_created",
                request_id=request.id,
                claim=request.claim
            )
            return AccessRequestResponse.from_request(request)

        @self.app.get("/access", response_model=AccessRequestListResponse)
        async def list_access_requests(
            subject_wallet: Optional[str] = Query(None, description="Filter by subject wallet"),
            relying_party_wallet: Optional[str] = Query(None, description="Filter by relying party wallet"),
            status: Optional[AccessRequestStatus] = Query(None, description="Filter by status")
        ):
            """List access requests for a party, newest first."""
            requests = await self.lifecycle.list(
                subject_wallet=subject_wallet,
                relying_party_wallet=relying_party_wallet,
                status=status
            )
            return AccessRequestListResponse(
                items=[AccessRequestResponse.from_request(r) for r in requests],
                total=len(requests)
            )

        @self.app.get("/access/{request_id}", response_model=AccessRequestResponse)
        async def get_access_request(request_id: str):
            """Fetch one access request."""
            request = await self.lifecycle.get(request_id)
            return AccessRequestResponse.from_request(request)

        @self.app.post("/access/{request_id}/challenge", response_model=AccessRequestResponse)
        async def challenge_access_request(request_id: str, body: Optional[ChallengeRequest] = Body(None)):
            """Challenge the subject for a credential."""
            request = await self.lifecycle.challenge(request_id, body.message if body else None)
            return AccessRequestResponse.from_request(request)

        @self.app.post("/access/{request_id}/respond", response_model=AccessRequestResponse)
        async def respond_access_request(request_id: str, body: RespondRequest):
            """Attach the subject's credential reference."""
            request = await self.lifecycle.respond(request_id, body.response_payload, body.status)
            return AccessRequestResponse.from_request(request)

        @self.app.post("/access/{request_id}/evaluate", response_model=AccessRequestResponse)
        async def evaluate_access_request(request_id: str, body: Optional[EvaluateRequest] = Body(None)):
            """Verify the credential and decide the request."""
            body = body or EvaluateRequest()
            request = await self.lifecycle.evaluate(request_id, body.result, body.reason)
            self.observability.log_business_event(
                "access_request_evaluated",
                request_id=request.id,
                status=request.status.value
            )
            return AccessRequestResponse.from_request(request)

        @self.app.get("/events/stream")
        async def events_stream():
            """Server-Sent Events stream of access request changes."""
            subscription = self.publisher.subscribe()
            return StreamingResponse(
                sse_event_stream(subscription, heartbeat_seconds=self.config.sse_heartbeat_seconds),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "Connection": "keep-alive"
                }
            )

        @self.app.get("/events/stats")
        async def events_stats():
            """Subscriber statistics."""
            return self.publisher.get_stats()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check access service dependencies."""
        dependencies = {}

        try:
            dependencies["store"] = "ok" if await self.store.health_check() else "error"
        except Exception as e:
            self.logger.warning("Store health check failed", error=str(e))
            dependencies["store"] = "error"

        try:
            dependencies["credential_verifier"] = "ok" if await self.verifier.health_check() else "error"
        except Exception as e:
            self.logger.warning("Credential verifier health check failed", error=str(e))
            dependencies["credential_verifier"] = "error"

        return dependencies


def create_app():
    """Create access service application."""
    service = AccessService()
    return service.app


if __name__ == "__main__":
    service = AccessService()
    service.run()
