"""
Access request data models for the Access Service.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..conditions.models import ConditionNode
from ..conditions.parser import condition_to_dict, parse_condition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessRequestStatus(str, Enum):
    """Access request lifecycle states."""
    REQUESTED = "requested"
    CHALLENGE_SENT = "challenge_sent"
    RESPONDED = "responded"
    GRANTED = "granted"
    DENIED = "denied"

    @property
    def is_terminal(self) -> bool:
        return self in (AccessRequestStatus.GRANTED, AccessRequestStatus.DENIED)

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]


STATUS_RANK = {
    AccessRequestStatus.REQUESTED: 0,
    AccessRequestStatus.CHALLENGE_SENT: 1,
    AccessRequestStatus.RESPONDED: 2,
    AccessRequestStatus.GRANTED: 3,
    AccessRequestStatus.DENIED: 3,
}


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class PolicyInfo:
    """Catalog policy a request was raised under."""
    id: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyInfo":
        return cls(id=data.get("id"), label=data.get("label"), description=data.get("description"))


@dataclass
class ChallengeNote:
    message: Optional[str]
    issued_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "issued_at": _dt(self.issued_at)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChallengeNote":
        return cls(message=data.get("message"), issued_at=_parse_dt(data["issued_at"]))


@dataclass
class ResponseNote:
    submitted_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"submitted_at": _dt(self.submitted_at)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseNote":
        return cls(submitted_at=_parse_dt(data["submitted_at"]))


@dataclass
class EvaluationNote:
    """Decision record. ``claim_values``/``condition`` are absent when verification failed."""
    status: AccessRequestStatus
    reason: str
    evaluated_at: datetime
    claim_values: Optional[Dict[str, Any]] = None
    condition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "evaluated_at": _dt(self.evaluated_at),
            "claim_values": self.claim_values,
            "condition": self.condition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationNote":
        return cls(
            status=AccessRequestStatus(data["status"]),
            reason=data["reason"],
            evaluated_at=_parse_dt(data["evaluated_at"]),
            claim_values=data.get("claim_values"),
            condition=data.get("condition"),
        )


@dataclass
class TimelineEntry:
    state: AccessRequestStatus
    at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "at": _dt(self.at)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEntry":
        return cls(state=AccessRequestStatus(data["state"]), at=_parse_dt(data["at"]))


@dataclass
class AccessRequestNotes:
    """Structured audit trail; one sub-record per lifecycle stage plus the timeline."""
    policy: Optional[PolicyInfo] = None
    initial_message: Optional[str] = None
    challenge: Optional[ChallengeNote] = None
    response: Optional[ResponseNote] = None
    evaluation: Optional[EvaluationNote] = None
    timeline: List[TimelineEntry] = field(default_factory=list)

    def record(self, state: AccessRequestStatus, at: datetime):
        """Append a timeline entry. Entries are never removed or reordered."""
        self.timeline.append(TimelineEntry(state=state, at=at))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy.to_dict() if self.policy else None,
            "initial_message": self.initial_message,
            "challenge": self.challenge.to_dict() if self.challenge else None,
            "response": self.response.to_dict() if self.response else None,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "timeline": [entry.to_dict() for entry in self.timeline],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AccessRequestNotes":
        data = data or {}
        return cls(
            policy=PolicyInfo.from_dict(data["policy"]) if data.get("policy") else None,
            initial_message=data.get("initial_message"),
            challenge=ChallengeNote.from_dict(data["challenge"]) if data.get("challenge") else None,
            response=ResponseNote.from_dict(data["response"]) if data.get("response") else None,
            evaluation=EvaluationNote.from_dict(data["evaluation"]) if data.get("evaluation") else None,
            timeline=[TimelineEntry.from_dict(entry) for entry in data.get("timeline") or []],
        )


@dataclass
class AccessRequest:
    """A subject's request for access to a relying party's resource."""
    id: str
    subject_wallet: str
    relying_party_wallet: str
    claim: str
    condition: ConditionNode
    status: AccessRequestStatus = AccessRequestStatus.REQUESTED
    notes: AccessRequestNotes = field(default_factory=AccessRequestNotes)
    response_payload: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    responded_at: Optional[datetime] = None
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize into JSON-compatible data."""
        return {
            "id": self.id,
            "subject_wallet": self.subject_wallet,
            "relying_party_wallet": self.relying_party_wallet,
            "claim": self.claim,
            "condition": condition_to_dict(self.condition),
            "status": self.status.value,
            "notes": self.notes.to_dict(),
            "response_payload": self.response_payload,
            "created_at": _dt(self.created_at),
            "updated_at": _dt(self.updated_at),
            "responded_at": _dt(self.responded_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessRequest":
        """Inverse of ``to_dict``."""
        return cls(
            id=data["id"],
            subject_wallet=data["subject_wallet"],
            relying_party_wallet=data["relying_party_wallet"],
            claim=data["claim"],
            condition=parse_condition(data["condition"]),
            status=AccessRequestStatus(data["status"]),
            notes=AccessRequestNotes.from_dict(data.get("notes")),
            response_payload=data.get("response_payload"),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            responded_at=_parse_dt(data.get("responded_at")),
            version=data.get("version", 0),
        )


class AccessRequestCreate(BaseModel):
    """Request model for creating an access request."""
    subject_wallet: str = Field(..., description="Wallet of the credential holder")
    relying_party_wallet: Optional[str] = Field(None, description="Wallet of the relying party")
    claim: Optional[str] = Field(None, description="Primary claim; derived from the condition when omitted")
    condition: Optional[Any] = Field(None, description="Condition tree or literal string")
    policy_id: Optional[str] = Field(None, description="Catalog policy to request under")
    policy: Optional[Dict[str, Any]] = Field(None, description="Policy metadata (id, label, description)")
    message: Optional[str] = Field(None, description="Initial message to the relying party")


class ChallengeRequest(BaseModel):
    """Request model for sending a challenge."""
    message: Optional[str] = Field(None, description="Challenge message for the subject")


class RespondRequest(BaseModel):
    """Request model for responding to a challenge."""
    model_config = ConfigDict(populate_by_name=True)

    response_payload: Optional[Dict[str, Any]] = Field(None, alias="responsePayload", description="Credential reference (vcJwt and/or credentialId)")
    status: Optional[str] = Field(None, description="Target status; only 'responded' is accepted")


class EvaluateRequest(BaseModel):
    """Request model for evaluating an access request."""
    result: Optional[str] = Field(None, description="Human override: granted or denied")
    reason: Optional[str] = Field(None, description="Override reason")


class AccessRequestResponse(BaseModel):
    """Response model for access request operations."""
    id: str
    subject_wallet: str
    relying_party_wallet: str
    claim: str
    condition: Any
    status: AccessRequestStatus
    notes: Dict[str, Any]
    response_payload: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime
    responded_at: Optional[datetime]
    version: int

    @classmethod
    def from_request(cls, request: AccessRequest) -> "AccessRequestResponse":
        return cls(**request.to_dict())


class AccessRequestListResponse(BaseModel):
    """Response model for access request list."""
    items: List[AccessRequestResponse]
    total: int
