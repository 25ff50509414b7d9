"""
Access request state machine.

    requested -> challenge_sent -> responded -> granted | denied

Every operation is one read-modify-write against the store, committed as
a compare-and-swap on the row version, and publishes exactly one event
once the write has landed. Structural problems raise before anything is
written; a failed verification or an unmet condition is a normal
``denied`` outcome recorded in ``notes.evaluation``.
"""

import copy
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from shared.logging import get_logger
from shared.errors import (
    ClaimUndeterminedError, ConflictError, CredentialNotFoundError, InvalidConditionError,
    InvalidTransitionError, MissingPayloadError, NoCredentialError, NoResponseError,
    NotFoundError, ValidationError
)
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, run_with_retry
from shared.tracing import trace_operation
from .models import (
    AccessRequest, AccessRequestNotes, AccessRequestStatus, ChallengeNote, EvaluationNote,
    PolicyInfo, ResponseNote, utcnow
)
from .store import AccessRequestStore, Mutator
from ..conditions.evaluator import evaluate_condition
from ..conditions.models import describe_condition, primary_claim
from ..conditions.parser import parse_condition
from ..credentials.client import CredentialVerifier
from ..credentials.store import CredentialStore
from ..events.publisher import ACCESS_REQUEST_CREATED, ACCESS_REQUEST_UPDATED, EventPublisher
from ..policies import get_policy

VERIFICATION_FAILED_REASON = "Credential verification failed"


def normalize_wallet(wallet: Any, field_name: str) -> str:
    if not isinstance(wallet, str) or not wallet.strip():
        raise ValidationError(f"{field_name} required", {"field": field_name})
    return wallet.strip().lower()


def normalize_override(result: Any) -> Optional[AccessRequestStatus]:
    """Map a caller's override to ``granted``/``denied``; ``None`` means no override."""
    if result is None:
        return None
    if isinstance(result, AccessRequestStatus):
        status = result
    elif isinstance(result, str):
        try:
            status = AccessRequestStatus(result.strip().lower())
        except ValueError:
            status = None
    else:
        status = None

    if not status or not status.is_terminal:
        raise ValidationError("result must be granted or denied", {"result": str(result)})
    return status


def _policy_info(policy: Optional[Dict[str, Any]]) -> Optional[PolicyInfo]:
    if not isinstance(policy, dict):
        return None
    policy_id = str(policy["id"]) if policy.get("id") else None
    label = str(policy["label"]) if policy.get("label") else None
    if not policy_id and not label:
        return None
    description = policy.get("description")
    return PolicyInfo(
        id=policy_id,
        label=label,
        description=str(description) if description is not None else None
    )


class AccessRequestLifecycle:
    """Orchestrates access request transitions."""

    def __init__(
        self,
        store: AccessRequestStore,
        verifier: CredentialVerifier,
        credential_store: CredentialStore,
        publisher: EventPublisher,
        metrics: Optional[MetricsCollector] = None,
        retry_attempts: int = 3,
        clock: Callable = utcnow
    ):
        self.store = store
        self.verifier = verifier
        self.credential_store = credential_store
        self.publisher = publisher
        self.metrics = metrics
        self.retry_config = RetryConfig(max_attempts=retry_attempts)
        self.clock = clock
        self.logger = get_logger("access.lifecycle")

    async def create(
        self,
        subject_wallet: str,
        relying_party_wallet: Optional[str] = None,
        condition: Any = None,
        claim: Optional[str] = None,
        policy: Optional[Dict[str, Any]] = None,
        initial_message: Optional[str] = None,
        policy_id: Optional[str] = None
    ) -> AccessRequest:
        """Create a request in ``requested``."""
        if policy_id:
            preset = get_policy(policy_id)
            if preset is None:
                raise ValidationError(f"Unknown policy: {policy_id}", {"policy_id": policy_id})
            relying_party_wallet = relying_party_wallet or preset.relying_party_wallet
            condition = condition if condition is not None else preset.condition
            claim = claim or preset.claim
            policy = policy or {"id": preset.id, "label": preset.label, "description": preset.description}

        subject = normalize_wallet(subject_wallet, "subject_wallet")
        relying_party = normalize_wallet(relying_party_wallet, "relying_party_wallet")

        if condition is None:
            raise InvalidConditionError("condition required")
        node = parse_condition(condition)

        resolved_claim = claim.strip() if isinstance(claim, str) and claim.strip() else primary_claim(node)
        if not resolved_claim:
            raise ClaimUndeterminedError()

        now = self.clock()
        notes = AccessRequestNotes(policy=_policy_info(policy))
        if isinstance(initial_message, str) and initial_message.strip():
            notes.initial_message = initial_message.strip()
        notes.record(AccessRequestStatus.REQUESTED, now)

        request = await self.store.insert(AccessRequest(
            id=str(uuid.uuid4()),
            subject_wallet=subject,
            relying_party_wallet=relying_party,
            claim=resolved_claim,
            condition=node,
            status=AccessRequestStatus.REQUESTED,
            notes=notes,
            created_at=now,
            updated_at=now
        ))

        self._transitioned(ACCESS_REQUEST_CREATED, request)
        return request

    async def get(self, request_id: str) -> AccessRequest:
        request = await self.store.get_by_id(request_id)
        if request is None:
            raise NotFoundError(details={"id": request_id})
        return request

    async def list(
        self,
        subject_wallet: Optional[str] = None,
        relying_party_wallet: Optional[str] = None,
        status: Union[AccessRequestStatus, str, None] = None
    ) -> List[AccessRequest]:
        """List requests for a party, newest first."""
        subject = normalize_wallet(subject_wallet, "subject_wallet") if subject_wallet else None
        relying_party = (
            normalize_wallet(relying_party_wallet, "relying_party_wallet") if relying_party_wallet else None
        )
        if not subject and not relying_party:
            raise ValidationError("subject_wallet or relying_party_wallet required")

        if status is not None and not isinstance(status, AccessRequestStatus):
            try:
                status = AccessRequestStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status}", {"status": status})

        return await self.store.query_by_party(subject, relying_party, status)

    async def challenge(self, request_id: str, message: Optional[str] = None) -> AccessRequest:
        """Relying party challenges the subject for proof."""

        def mutate(request: AccessRequest) -> AccessRequest:
            self._guard(request, AccessRequestStatus.CHALLENGE_SENT, "challenge")
            now = self.clock()
            request.status = AccessRequestStatus.CHALLENGE_SENT
            request.notes.challenge = ChallengeNote(message=message, issued_at=now)
            request.notes.record(AccessRequestStatus.CHALLENGE_SENT, now)
            request.updated_at = now
            return request

        request = await self._update_with_retry(request_id, mutate, "challenge")
        self._transitioned(ACCESS_REQUEST_UPDATED, request)
        return request

    async def respond(
        self,
        request_id: str,
        response_payload: Optional[Dict[str, Any]],
        status: Optional[str] = None
    ) -> AccessRequest:
        """Subject presents a credential reference."""
        if response_payload is None:
            raise MissingPayloadError()
        if not isinstance(response_payload, dict):
            raise ValidationError("responsePayload must be an object")
        if status is not None and status != AccessRequestStatus.RESPONDED.value:
            raise ValidationError("status must be 'responded'", {"status": status})

        def mutate(request: AccessRequest) -> AccessRequest:
            self._guard(request, AccessRequestStatus.RESPONDED, "respond")
            now = self.clock()
            request.response_payload = copy.deepcopy(response_payload)
            request.status = AccessRequestStatus.RESPONDED
            if request.responded_at is None:
                request.responded_at = now
            request.notes.response = ResponseNote(submitted_at=now)
            request.notes.record(AccessRequestStatus.RESPONDED, now)
            request.updated_at = now
            return request

        request = await self._update_with_retry(request_id, mutate, "respond")
        self._transitioned(ACCESS_REQUEST_UPDATED, request)
        return request

    async def evaluate(
        self,
        request_id: str,
        override_result: Any = None,
        override_reason: Optional[str] = None
    ) -> AccessRequest:
        """Verify the presented credential and decide the request.

        Not retried on conflict: when two evaluations race, the loser
        gets ``ConflictError`` instead of overwriting the winner's decision.
        """
        override = normalize_override(override_result)
        request = await self.get(request_id)
        self._guard(request, AccessRequestStatus.GRANTED, "evaluate")

        if request.response_payload is None:
            raise NoResponseError(details={"id": request_id})

        token = await self._resolve_token(request.response_payload)

        with trace_operation("access.evaluate", request_id=request_id):
            started = time.time()
            verification = await self.verifier.verify_credential(token)

            if not verification.verified:
                evaluation = EvaluationNote(
                    status=AccessRequestStatus.DENIED,
                    reason=VERIFICATION_FAILED_REASON,
                    evaluated_at=self.clock()
                )
                outcome = "verification_failed"
            else:
                claims = await self.verifier.decode_credential(token)
                result = evaluate_condition(claims, request.condition, request.claim)
                if override is not None:
                    status = override
                else:
                    status = AccessRequestStatus.GRANTED if result.passed else AccessRequestStatus.DENIED
                evaluation = EvaluationNote(
                    status=status,
                    reason=override_reason if override_reason is not None else result.reason,
                    evaluated_at=self.clock(),
                    claim_values=result.values,
                    condition=describe_condition(request.condition)
                )
                outcome = "override" if override is not None else ("passed" if result.passed else "failed")

            if self.metrics:
                self.metrics.get_metric("access_evaluation_duration_seconds").observe(time.time() - started)

        def mutate(current: AccessRequest) -> AccessRequest:
            self._guard(current, AccessRequestStatus.GRANTED, "evaluate")
            current.status = evaluation.status
            current.notes.evaluation = evaluation
            current.notes.record(evaluation.status, evaluation.evaluated_at)
            current.updated_at = evaluation.evaluated_at
            return current

        updated = await self.store.update(request_id, mutate, expected_version=request.version)

        if self.metrics:
            self.metrics.increment_counter("access_evaluations_total", outcome=outcome)
        self.logger.info(
            "Access request evaluated",
            request_id=request_id,
            status=updated.status.value,
            outcome=outcome,
            reason=evaluation.reason
        )
        self._transitioned(ACCESS_REQUEST_UPDATED, updated)
        return updated

    async def _resolve_token(self, payload: Dict[str, Any]) -> str:
        token = payload.get("vcJwt") or payload.get("vc_jwt")
        credential_id = payload.get("credentialId", payload.get("credential_id"))

        if not token and credential_id is not None:
            token = await self.credential_store.lookup(credential_id)
            if token is None:
                raise CredentialNotFoundError(details={"credential_id": str(credential_id)})

        if not isinstance(token, str) or not token:
            raise NoCredentialError()
        return token

    async def _update_with_retry(self, request_id: str, mutate: Mutator, operation: str) -> AccessRequest:
        async def attempt() -> AccessRequest:
            current = await self.get(request_id)
            return await self.store.update(request_id, mutate, expected_version=current.version)

        return await run_with_retry(
            attempt,
            exceptions=(ConflictError,),
            config=self.retry_config,
            name=f"access.{operation}"
        )

    def _guard(self, request: AccessRequest, target: AccessRequestStatus, operation: str):
        """Moves only go forward; re-entering the current state is allowed and terminal states are final."""
        if request.status.is_terminal or request.status.rank > target.rank:
            raise InvalidTransitionError(
                f"Cannot {operation} an access request in state '{request.status.value}'",
                {"id": request.id, "status": request.status.value, "operation": operation}
            )

    def _transitioned(self, event_type: str, request: AccessRequest):
        self.logger.info(
            "Access request transitioned",
            request_id=request.id,
            status=request.status.value,
            event_type=event_type,
            timeline_length=len(request.notes.timeline)
        )
        if self.metrics:
            self.metrics.increment_counter("access_transitions_total", status=request.status.value)
        self.publisher.publish(event_type, request)
