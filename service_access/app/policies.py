"""
Catalog of access policies relying parties commonly request under.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .conditions.models import ConditionNode
from .conditions.parser import condition_to_dict, parse_condition


@dataclass(frozen=True)
class AccessPolicy:
    id: str
    label: str
    description: str
    relying_party_wallet: str
    claim: str
    condition: ConditionNode

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "relying_party_wallet": self.relying_party_wallet,
            "claim": self.claim,
            "condition": condition_to_dict(self.condition),
        }


ACCESS_POLICIES: List[AccessPolicy] = [
    AccessPolicy(
        id="lounge-21",
        label="Night Lounge Access",
        description="Entry allowed only for guests aged 21 or above.",
        relying_party_wallet="0xverifierlounge",
        claim="age",
        condition=parse_condition({"op": ">=", "value": 21}),
    ),
    AccessPolicy(
        id="airport-covid",
        label="Airport Boarding (COVID Clearance)",
        description="Boarding requires an up-to-date COVID vaccination record.",
        relying_party_wallet="0xverifierairport",
        claim="vaccination",
        condition=parse_condition({"op": "equals", "value": "yes"}),
    ),
    AccessPolicy(
        id="india-entry",
        label="Immigration Entry to India",
        description="Immigration verifies nationality status before granting entry.",
        relying_party_wallet="0xverifierimmigration",
        claim="nationality",
        condition=parse_condition({"op": "equals", "value": "indian"}),
    ),
    AccessPolicy(
        id="campus-student",
        label="University Campus Access",
        description="Only currently enrolled students may enter the campus zone.",
        relying_party_wallet="0xverifiercampus",
        claim="college_status",
        condition=parse_condition({"op": "equals", "value": "enrolled"}),
    ),
    AccessPolicy(
        id="vip-event",
        label="VIP Tech Event Access",
        description="Event requires proof of vaccination and age at least 18.",
        relying_party_wallet="0xverifierevent",
        claim="vaccination",
        condition=parse_condition({
            "all": [
                {"claim": "vaccination", "op": "equals", "value": "yes"},
                {"claim": "age", "op": ">=", "value": 18},
            ]
        }),
    ),
]

_POLICIES_BY_ID = {policy.id: policy for policy in ACCESS_POLICIES}


def get_policy(policy_id: str) -> Optional[AccessPolicy]:
    return _POLICIES_BY_ID.get(policy_id)
