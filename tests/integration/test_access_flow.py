"""
Integration tests for the access request flow.

Drives the access service end to end through its HTTP API with real
credential JWTs; only the credential service's verify endpoint is mocked.
"""

import json
import pytest
import httpx
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_config
from shared.test_helpers import MockCredentialIssuer, TestDataFactory
from service_access.app.credentials.store import InMemoryCredentialStore
from service_access.app.events.publisher import ACCESS_REQUEST_CREATED, ACCESS_REQUEST_UPDATED
from service_access.app.main import AccessService


def verify_response(verified):
    return httpx.Response(
        status_code=200,
        content=json.dumps({"verified": verified}),
        request=httpx.Request("POST", "http://localhost:8020/credentials/verify")
    )


class TestAccessFlow:
    """Integration tests for the access request flow."""

    @pytest.fixture
    def issuer(self):
        """Credential issuer."""
        return MockCredentialIssuer()

    @pytest.fixture
    def credential_store(self):
        """Credential store shared with the service."""
        return InMemoryCredentialStore()

    @pytest.fixture
    def access_service(self, credential_store):
        """Access service wired to the HTTP credential verifier."""
        return AccessService(
            config=get_config("access", 8013, env="test"),
            credential_store=credential_store
        )

    @pytest.fixture
    def client(self, access_service):
        """Create test client."""
        return TestClient(access_service.app)

    @pytest.fixture
    def credential_service(self):
        """Mock the credential service's verify endpoint."""
        with patch('httpx.AsyncClient') as mock_client:
            post = AsyncMock(return_value=verify_response(True))
            mock_client.return_value.__aenter__.return_value.post = post
            yield post

    def run_flow(self, client, respond_with, condition=None, **create_kwargs):
        created = client.post(
            "/access/request",
            json=TestDataFactory.create_access_request_body(condition=condition, **create_kwargs)
        )
        assert created.status_code == 201
        request_id = created.json()["id"]

        challenged = client.post(f"/access/{request_id}/challenge", json={"message": "Please prove your age"})
        assert challenged.status_code == 200

        responded = client.post(f"/access/{request_id}/respond", json={"responsePayload": respond_with})
        assert responded.status_code == 200

        evaluated = client.post(f"/access/{request_id}/evaluate")
        assert evaluated.status_code == 200
        return evaluated.json()

    def test_adult_is_granted(self, client, issuer, credential_service):
        """Test a 25 year old is granted lounge access."""
        token = issuer.issue(TestDataFactory.SUBJECT_WALLET, {"age": 25})

        data = self.run_flow(client, {"vcJwt": token})

        assert data["status"] == "granted"
        assert data["notes"]["evaluation"]["claim_values"] == {"age": 25}
        assert data["notes"]["evaluation"]["reason"] == "age: Value 25 is ≥ 21"
        assert [entry["state"] for entry in data["notes"]["timeline"]] == [
            "requested", "challenge_sent", "responded", "granted"
        ]
        credential_service.assert_awaited_once_with(
            "http://localhost:8020/credentials/verify",
            json={"credential": token}
        )

    def test_minor_is_denied(self, client, issuer, credential_service):
        """Test a 19 year old is denied with the comparison in the reason."""
        token = issuer.issue(TestDataFactory.SUBJECT_WALLET, {"age": 19})

        data = self.run_flow(client, {"vcJwt": token})

        assert data["status"] == "denied"
        assert "Value 19 is < 21" in data["notes"]["evaluation"]["reason"]
        assert data["notes"]["evaluation"]["claim_values"] == {"age": 19}

    def test_unverified_credential_is_denied(self, client, issuer, credential_service):
        """Test a credential the service rejects is denied outright."""
        credential_service.return_value = verify_response(False)
        token = issuer.issue(TestDataFactory.SUBJECT_WALLET, {"age": 40})

        data = self.run_flow(client, {"vcJwt": token})

        assert data["status"] == "denied"
        assert data["notes"]["evaluation"]["reason"] == "Credential verification failed"
        assert data["notes"]["evaluation"]["claim_values"] is None

    def test_stored_credential(self, client, issuer, credential_store, credential_service):
        """Test a credential referenced by id is resolved from the store."""
        credential_store.register(7, issuer.issue(TestDataFactory.SUBJECT_WALLET, {"age": 30}))

        data = self.run_flow(client, {"credentialId": 7})

        assert data["status"] == "granted"

    def test_combined_policy(self, client, issuer, credential_service):
        """Test a catalog policy combining two claims."""
        created = client.post("/access/request", json={
            "subject_wallet": TestDataFactory.SUBJECT_WALLET,
            "policy_id": "vip-event"
        }).json()
        token = issuer.issue(TestDataFactory.SUBJECT_WALLET, {"vaccination": "yes", "age": 17})

        client.post(f"/access/{created['id']}/respond", json={"responsePayload": {"vcJwt": token}})
        data = client.post(f"/access/{created['id']}/evaluate").json()

        assert data["status"] == "denied"
        assert data["notes"]["evaluation"]["reason"].startswith("Some conditions failed: ")
        assert data["notes"]["evaluation"]["claim_values"] == {"vaccination": "yes", "age": 17}
        assert data["notes"]["evaluation"]["condition"] == "ALL[vaccination equals yes & age >= 18]"

    def test_events_follow_the_flow(self, client, issuer, access_service, credential_service):
        """Test subscribers see one event per transition, in order."""
        subscription = access_service.publisher.subscribe()
        token = issuer.issue(TestDataFactory.SUBJECT_WALLET, {"age": 25})

        data = self.run_flow(client, {"vcJwt": token})

        events = []
        while not subscription.queue.empty():
            events.append(subscription.queue.get_nowait())
        assert [event.type for event in events] == [
            ACCESS_REQUEST_CREATED, ACCESS_REQUEST_UPDATED, ACCESS_REQUEST_UPDATED, ACCESS_REQUEST_UPDATED
        ]
        assert [event.payload["status"] for event in events] == [
            "requested", "challenge_sent", "responded", "granted"
        ]
        assert events[-1].payload["id"] == data["id"]
        assert events[-1].payload["version"] == data["version"]
        subscription.close()

    def test_listing_after_flow(self, client, issuer, credential_service):
        """Test both parties see the decided request."""
        token = issuer.issue(TestDataFactory.SUBJECT_WALLET, {"age": 25})
        data = self.run_flow(client, {"vcJwt": token})

        for params in (
            {"subject_wallet": TestDataFactory.SUBJECT_WALLET},
            {"relying_party_wallet": TestDataFactory.RELYING_PARTY_WALLET, "status": "granted"},
        ):
            listed = client.get("/access", params=params).json()
            assert listed["total"] == 1
            assert listed["items"][0]["id"] == data["id"]
