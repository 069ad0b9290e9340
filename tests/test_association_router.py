import pytest
from fastapi.testclient import TestClient

from config import settings
from infrastructure.database.database import get_db
from main import app
from routers.dependencies import get_association_service
from schemas.associations import (
    AIContext,
    AssociationResult,
    AssociationSummary,
    EntityType,
    ExplicitAssociation,
    ExplicitAssociationRef,
    ImplicitAssociationRef,
)
from services.associations.counters import CounterAdjustment
from services.associations.errors import AssociationNotFound, EntityNotFound, QueryFailed
from services.associations.record_store import AssociationWriteResult

HEADERS = {"tenant_id": "T1", "user_id": "user-1"}


def _association() -> ExplicitAssociation:
    return ExplicitAssociation(
        id="A1",
        source_entity_type=EntityType.COMPANY,
        source_entity_id="C1",
        target_entity_type=EntityType.SALESPERSON,
        target_entity_id="S1",
        tenant_id="T1",
    )


class _FakeAssociationService:
    def __init__(self) -> None:
        self.calls = []
        self.error = None

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if self.error is not None:
            raise self.error

    async def create_association(self, *args, **kwargs):
        self._record("create", *args, **kwargs)
        return AssociationWriteResult(
            association_id="A1",
            created=True,
            counter_updates=[
                CounterAdjustment(EntityType.COMPANY, "C1", "associationCounts.salespeople", "applied"),
                CounterAdjustment(EntityType.SALESPERSON, "S1", "associationCounts.companies", "failed", "boom"),
            ],
        )

    async def bulk_create_associations(self, requests):
        self._record("bulk", requests)
        return [AssociationWriteResult(association_id=f"A{i}", created=True) for i, _ in enumerate(requests)]

    async def query_associations(self, query):
        self._record("query", query)
        associations = [_association()]
        return AssociationResult(
            associations=associations,
            summary=AssociationSummary.from_associations(associations),
        )

    async def get_ai_context(self, entity_type, entity_id, depth):
        self._record("context", entity_type, entity_id, depth)
        direct = AssociationResult(associations=[_association()])
        return AIContext(direct=direct, summary="Direct associations: 1\n")

    async def update_association(self, association_id, **kwargs):
        self._record("update", association_id, **kwargs)

    async def delete_association(self, ref):
        self._record("delete", ref)


@pytest.fixture
def fake_service():
    service = _FakeAssociationService()
    app.dependency_overrides[get_association_service] = lambda: service
    yield service
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def test_create_association_returns_counter_outcomes(client, fake_service):
    response = client.post(
        "/api/associations",
        json={
            "sourceEntityType": "company",
            "sourceEntityId": "C1",
            "targetEntityType": "salesperson",
            "targetEntityId": "S1",
            "strength": "strong",
        },
        headers=HEADERS,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == "A1"
    assert body["created"] is True
    assert [update["status"] for update in body["counterUpdates"]] == ["applied", "failed"]
    assert body["counterUpdates"][1]["error"] == "boom"
    name, args, kwargs = fake_service.calls[0]
    assert args == (EntityType.COMPANY, "C1", EntityType.SALESPERSON, "S1")
    assert kwargs["strength"] == "strong"


def test_create_rejects_self_association(client, fake_service):
    response = client.post(
        "/api/associations",
        json={
            "sourceEntityType": "company",
            "sourceEntityId": "C1",
            "targetEntityType": "company",
            "targetEntityId": "C1",
        },
        headers=HEADERS,
    )

    assert response.status_code == 422
    assert fake_service.calls == []


def test_create_maps_missing_entity_to_404(client, fake_service):
    fake_service.error = EntityNotFound("company", "C404")

    response = client.post(
        "/api/associations",
        json={
            "sourceEntityType": "company",
            "sourceEntityId": "C404",
            "targetEntityType": "contact",
            "targetEntityId": "P1",
        },
        headers=HEADERS,
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "company with ID C404 does not exist"


def test_bulk_create(client, fake_service):
    payload = [
        {
            "sourceEntityType": "deal",
            "sourceEntityId": "D1",
            "targetEntityType": "contact",
            "targetEntityId": contact_id,
        }
        for contact_id in ("P1", "P2")
    ]

    response = client.post("/api/associations/bulk", json=payload, headers=HEADERS)

    assert response.status_code == 201
    assert [item["id"] for item in response.json()] == ["A0", "A1"]


def test_query_associations_parses_filters(client, fake_service):
    response = client.get(
        "/api/associations/company/C1",
        params=[
            ("targetTypes", "salesperson"),
            ("targetTypes", "contact"),
            ("strength", "strong"),
            ("includeMetadata", "false"),
            ("limit", "5"),
        ],
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["associations"][0]["sourceEntityId"] == "C1"
    assert body["associations"][0]["kind"] == "explicit"
    assert body["summary"] == {
        "totalAssociations": 1,
        "byType": {"company→salesperson": 1},
        "byStrength": {"company→salesperson (medium)": 1},
    }
    assert set(body["entities"]) >= {"companies", "salespeople"}

    _, (query,), _ = fake_service.calls[0]
    assert query.target_types == [EntityType.SALESPERSON, EntityType.CONTACT]
    assert query.include_metadata is False
    assert query.limit == 5


def test_query_failure_maps_to_502(client, fake_service):
    fake_service.error = QueryFailed("company", "C1", ConnectionError("down"))

    response = client.get("/api/associations/company/C1", headers=HEADERS)

    assert response.status_code == 502


def test_unknown_entity_type_is_rejected(client, fake_service):
    response = client.get("/api/associations/widget/W1", headers=HEADERS)

    assert response.status_code == 422


def test_context_endpoint(client, fake_service):
    response = client.get(
        "/api/associations/deal/D1/context", params={"depth": "deep"}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.json()["summary"] == "Direct associations: 1\n"
    assert fake_service.calls[0][1] == (EntityType.DEAL, "D1", "deep")


def test_delete_decodes_implicit_ids(client, fake_service):
    response = client.delete("/api/associations/implicit_P1_company_C1", headers=HEADERS)
    explicit = client.delete("/api/associations/abc123", headers=HEADERS)

    assert response.status_code == 204
    assert explicit.status_code == 204
    assert fake_service.calls[0][1] == (
        ImplicitAssociationRef(source_id="P1", target_type="company", target_id="C1"),
    )
    assert fake_service.calls[1][1] == (ExplicitAssociationRef(id="abc123"),)


def test_delete_unknown_association_is_404(client, fake_service):
    fake_service.error = AssociationNotFound("abc123")

    response = client.delete("/api/associations/abc123", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "Association abc123 not found"


def test_update_association(client, fake_service):
    response = client.patch("/api/associations/A1", json={"role": "champion"}, headers=HEADERS)
    empty = client.patch("/api/associations/A1", json={}, headers=HEADERS)
    implicit = client.patch(
        "/api/associations/implicit_P1_company_C1", json={"role": "x"}, headers=HEADERS
    )

    assert response.status_code == 204
    assert fake_service.calls[0][0] == "update"
    assert fake_service.calls[0][2]["role"] == "champion"
    assert empty.status_code == 422
    assert implicit.status_code == 400


def test_tenant_header_is_required(client, monkeypatch):
    async def _no_db():
        yield None

    monkeypatch.setattr(settings, "IS_DEV_MODE", False)
    app.dependency_overrides[get_db] = _no_db
    try:
        response = client.get("/api/associations/company/C1", headers={"user_id": "user-1"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert response.json()["detail"] == "tenant_id header is required"


def test_api_key_guard(client, fake_service, monkeypatch):
    monkeypatch.setattr(settings, "API_AUTH_TOKEN", "secret")

    denied = client.get("/api/associations/company/C1", headers=HEADERS)
    allowed = client.get(
        "/api/associations/company/C1", headers={**HEADERS, "X-API-Key": "secret"}
    )

    assert denied.status_code == 401
    assert allowed.status_code == 200


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
