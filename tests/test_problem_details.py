"""Tests des réponses d'erreur RFC 9457 (application/problem+json)."""

import uuid

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from fastapi_errors_rfc9457 import RFC9457Config, setup_rfc9457_handlers
from pydantic import BaseModel, Field

from app.core.exceptions import (
    AppointmentConflictError,
    BadRequestError,
    InsufficientStockError,
    InvitationError,
    NotFoundError,
    PlanUpgradeRequiredError,
    UnauthorizedError,
    UsageLimitExceededError,
)


class ItemPayload(BaseModel):
    quantity: int = Field(..., gt=0)


def build_app() -> FastAPI:
    app = FastAPI()
    config = RFC9457Config(
        base_url="about:blank",
        include_trace_id=True,
        expose_internal_errors=False,
        include_error_pages=False,
    )
    setup_rfc9457_handlers(app, config=config)

    @app.get("/not-found")
    async def not_found():
        raise NotFoundError(resource_type="Patient", resource_id="p-1")

    @app.get("/limit")
    async def limit():
        raise UsageLimitExceededError(
            limit_type="max_patients",
            current=50,
            limit=50,
            detail="Patient limit reached (50/50). Please upgrade your plan to add more patients.",
        )

    @app.get("/upgrade")
    async def upgrade():
        raise PlanUpgradeRequiredError(required_plan="pro", current_plan="free")

    @app.get("/stock/{batch_id}")
    async def stock(batch_id: uuid.UUID):
        raise InsufficientStockError(batch_id, requested=5, available=2)

    @app.get("/unauthorized")
    async def unauthorized():
        raise UnauthorizedError()

    @app.get("/http")
    async def http_error():
        raise HTTPException(status_code=404, detail="Route metier absente")

    @app.post("/validate")
    async def validate(payload: ItemPayload):
        return payload

    @app.get("/crash")
    async def crash():
        raise RuntimeError("database exploded")

    return app


@pytest.fixture
def client():
    return TestClient(build_app(), raise_server_exceptions=False)


class TestPracticeProblems:
    def test_not_found_problem(self, client):
        response = client.get("/not-found")

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/problem+json"
        body = response.json()
        assert body["type"] == "http://testserver/errors/not-found.html"
        assert body["title"] == "Not Found"
        assert body["detail"] == "Patient p-1 not found"
        assert body["resource_type"] == "Patient"
        assert body["resource_id"] == "p-1"
        assert body["instance"] == "/not-found"

    def test_usage_limit_extensions(self, client):
        """Le corps expose limit_type, current et limit pour l'invite de mise à niveau."""
        response = client.get("/limit")

        assert response.status_code == 403
        body = response.json()
        assert body["limit_type"] == "max_patients"
        assert body["current"] == 50
        assert body["limit"] == 50
        assert body["detail"].startswith("Patient limit reached (50/50)")

    def test_plan_upgrade_required(self, client):
        response = client.get("/upgrade")

        assert response.status_code == 403
        body = response.json()
        assert body["required_plan"] == "pro"
        assert body["current_plan"] == "free"

    def test_insufficient_stock_is_conflict(self, client):
        batch_id = uuid.uuid4()
        response = client.get(f"/stock/{batch_id}")

        assert response.status_code == 409
        body = response.json()
        assert body["batch_id"] == str(batch_id)
        assert body["requested"] == 5
        assert body["available"] == 2

    def test_unauthorized_sets_www_authenticate(self, client):
        response = client.get("/unauthorized")

        assert response.status_code == 401
        assert "www-authenticate" in response.headers


class TestStandardErrors:
    def test_http_exception_converted(self, client):
        response = client.get("/http")

        assert response.status_code == 404
        body = response.json()
        assert body["title"] == "Not Found"
        assert body["detail"] == "Route metier absente"

    def test_validation_error(self, client):
        response = client.post("/validate", json={"quantity": 0})

        assert response.status_code == 422
        body = response.json()
        assert body["title"] == "Validation Error"
        assert any("quantity" in str(error["loc"]) for error in body["errors"])

    def test_unhandled_exception_hidden(self, client):
        response = client.get("/crash")

        assert response.status_code == 500
        assert "database exploded" not in response.json()["detail"]


class TestExceptionClasses:
    def test_bad_request(self):
        error = BadRequestError(detail="Missing required fields: name")

        assert error.status_code == 400
        result = error.to_dict()
        assert result["detail"] == "Missing required fields: name"
        assert result["type"] == "https://africare.app/errors/bad-request"

    def test_appointment_conflict_default_detail(self):
        error = AppointmentConflictError()

        assert error.status_code == 409
        result = error.to_dict()
        assert result["detail"] == "The doctor already has an appointment at this time"
        assert result["type"] == "https://africare.app/errors/appointment-conflict"

    def test_plan_upgrade_type(self):
        result = PlanUpgradeRequiredError(required_plan="pro", current_plan="free").to_dict()

        assert result["type"] == "https://africare.app/errors/plan-upgrade-required"
        assert result["detail"] == "This feature requires the pro plan (current plan: free)"

    def test_invitation_error(self):
        error = InvitationError(detail="Invitation has expired")

        assert error.status_code == 400
        assert error.to_dict()["title"] == "Invalid Invitation"

    def test_not_found_uuid_serialized(self):
        resource_id = uuid.uuid4()

        result = NotFoundError(resource_type="Sale", resource_id=resource_id).to_dict()

        assert result["resource_id"] == str(resource_id)
        assert result["detail"] == f"Sale {resource_id} not found"
