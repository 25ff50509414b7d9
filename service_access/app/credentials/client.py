"""
Credential verification client for the Access Service.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import jwt

from shared.logging import get_logger
from shared.errors import ExternalServiceError


@dataclass
class VerificationResult:
    """Cryptographic verification outcome for a presented credential."""
    verified: bool
    error: Optional[str] = None


def extract_credential_subject(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Pull the subject claims out of a decoded credential JWT payload."""
    vc = payload.get("vc")
    if isinstance(vc, dict) and isinstance(vc.get("credentialSubject"), dict):
        return vc["credentialSubject"]
    subject = payload.get("credentialSubject")
    return subject if isinstance(subject, dict) else {}


class CredentialVerifier(ABC):
    """External collaborator that verifies and decodes credentials."""

    @abstractmethod
    async def verify_credential(self, token: str) -> VerificationResult:
        ...

    @abstractmethod
    async def decode_credential(self, token: str) -> Dict[str, Any]:
        """Return the subject claims carried by ``token``."""

    async def health_check(self) -> bool:
        return True


class HttpCredentialVerifier(CredentialVerifier):
    """Verifies credentials through the credential service over HTTP.

    Decoding is local: once the service has vouched for the signature the
    payload only needs to be read, not re-verified.
    """

    def __init__(self, service_url: str, timeout: float = 5.0):
        self.service_url = service_url.rstrip('/')
        self.timeout = timeout
        self.logger = get_logger("access.credentials.client")

    async def verify_credential(self, token: str) -> VerificationResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.service_url}/credentials/verify",
                    json={"credential": token}
                )

        except httpx.TimeoutException:
            self.logger.error("Credential service timeout")
            raise ExternalServiceError("credential-service", "timeout")
        except httpx.RequestError as e:
            self.logger.error("Credential service request error", error=str(e))
            raise ExternalServiceError("credential-service", "unavailable")

        if response.status_code >= 500:
            self.logger.error("Credential service failure", status_code=response.status_code)
            raise ExternalServiceError(
                "credential-service",
                f"status {response.status_code}",
                {"status_code": response.status_code}
            )

        if response.status_code != 200:
            self.logger.warning(
                "Credential rejected by verifier",
                status_code=response.status_code,
                response=response.text
            )
            return VerificationResult(verified=False, error=f"status {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            self.logger.error("Credential service returned an unreadable body", response=response.text)
            raise ExternalServiceError("credential-service", "invalid response")

        return VerificationResult(verified=body.get("verified") is True, error=body.get("error"))

    async def decode_credential(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            self.logger.warning("Credential payload could not be decoded", error=str(e))
            return {}
        return extract_credential_subject(payload)

    async def health_check(self) -> bool:
        """Check if the credential service is healthy."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.service_url}/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False
