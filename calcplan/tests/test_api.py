"""
Tests for API layer.

Tests:
- API service methods
- Request/response serialization
- Error handling
- HTTP endpoints (when FastAPI is installed)
"""

import pytest
from pydantic import ValidationError

from ..api.schemas import (
    BuildRequest,
    BuildStatus,
    CalcInput,
    ErrorCode,
    ErrorResponse,
    ValidateRequest,
    VerifyRequest,
)
from ..api.service import APIService, status_for
from ..config import Settings
from .conftest import GS_INPUT, GS_PLAN, SR_INPUT, SR_PLAN


def gs_plan() -> dict:
    return {**GS_PLAN, "details": [dict(d) for d in GS_PLAN["details"]]}


class TestAPIService:
    """Tests for APIService."""

    @pytest.fixture
    def service(self):
        """A service with a fixed provenance string."""
        return APIService(settings=Settings(created_by="api-tests"))

    def test_health(self, service):
        """Health reports the service name."""
        response = service.health()
        assert response.status == "healthy"
        assert response.service == "calcplan"

    def test_validate(self, service):
        """A usable plan validates and comes back in camelCase."""
        request = ValidateRequest(input=CalcInput(**GS_INPUT), plan=gs_plan())

        response = service.validate(request)

        assert response.valid
        assert response.plan["mainAttr"] == "atk,cpct,cdmg"
        assert len(response.plan["details"]) == 3
        assert response.repair == []

    def test_validate_lists_dropped_fields(self, service):
        """Unsafe fields are dropped and reported, not fatal."""
        plan = gs_plan()
        plan["details"].append({"title": "坏", "talent": "e", "table": "技能伤害", "dmgExpr": "eval('1')"})

        response = service.validate(ValidateRequest(input=CalcInput(**GS_INPUT), plan=plan))

        assert response.valid
        bad = response.plan["details"][3]
        assert bad["title"] == "坏"
        assert "dmgExpr" not in bad
        assert any("坏" in w and "eval" in w for w in response.warnings)

    def test_validate_with_repair(self, service):
        """repair=True runs every pass and reports each one."""
        request = ValidateRequest(input=CalcInput(**SR_INPUT), plan={**SR_PLAN}, repair=True)

        response = service.validate(request)

        assert response.valid
        assert len(response.repair) == 20
        synth = next(step for step in response.repair if step.name == "synthesize-buffs")
        assert synth.changed
        skipped = next(step for step in response.repair if step.name == "normalize-titles")
        assert skipped.skipped

    def test_validate_nothing_usable(self, service):
        """A plan without valid details is valid=False, not an error."""
        plan = {"mainAttr": "atk", "details": [{"title": "E", "talent": "e", "table": "不存在"}]}

        response = service.validate(ValidateRequest(input=CalcInput(**GS_INPUT), plan=plan))

        assert not response.valid
        assert "no valid details" in response.errors

    def test_build(self, service):
        """Building from a plan renders and verifies it."""
        response = service.build(BuildRequest(input=CalcInput(**GS_INPUT), plan=gs_plan()))

        assert response.success
        assert response.status == BuildStatus.SUCCESS
        assert response.used_plan
        assert response.js.startswith("// Auto-generated by api-tests.")
        assert response.details_checked == 3
        assert "synthesize-buffs" in response.repaired

    def test_build_without_plan(self, service):
        """No plan means the heuristic fallback."""
        response = service.build(BuildRequest(input=CalcInput(**SR_INPUT), created_by="someone"))

        assert response.status == BuildStatus.FALLBACK
        assert not response.used_plan
        assert response.error == "no plan supplied"
        assert 'export const createdBy = "someone"' in response.js

    def test_build_empty_tables(self, service):
        """A context without tables is rejected as invalid input."""
        response = service.build(BuildRequest(input=CalcInput(game="gs", tables={})))

        assert isinstance(response, ErrorResponse)
        assert response.error_code == ErrorCode.INVALID_INPUT
        assert status_for(response) == 400

    def test_verify(self, service):
        """Rendered module text from build verifies on its own."""
        built = service.build(BuildRequest(input=CalcInput(**GS_INPUT), plan=gs_plan()))

        response = service.verify(VerifyRequest(input=CalcInput(**GS_INPUT), js=built.js))

        assert response.ok
        assert response.passes == ["N=100", "N=20", "N=1"]

    def test_verify_failure(self, service):
        """A failing module maps to VERIFICATION_FAILED with its stage."""
        js = 'export const details = []\nexport const buffs = [{ title: "坏", data: { cpct: 150 } }]\n'

        response = service.verify(VerifyRequest(input=CalcInput(**GS_INPUT), js=js))

        assert isinstance(response, ErrorResponse)
        assert response.error_code == ErrorCode.VERIFICATION_FAILED
        assert response.details == {"stage": "buff.data()", "target": "坏", "pass": "N=20"}
        assert status_for(response) == 422


class TestAPIModels:
    """Tests for request/response models."""

    def test_unknown_game_rejected(self):
        """Only gs and sr are accepted."""
        with pytest.raises(ValidationError):
            CalcInput(game="zz", tables={"e": ["技能伤害"]})

    def test_payload_keeps_camel_case(self):
        """to_payload emits the shape the pipeline reads."""
        payload = CalcInput(**GS_INPUT).to_payload()
        assert payload["game"] == "gs"
        assert payload["tableSamples"]["e"]["技能伤害"] == 220.3
        assert "upstream" not in payload

    def test_build_request_defaults(self):
        """verify defaults on, plan optional."""
        request = BuildRequest(input=CalcInput(**GS_INPUT))
        assert request.verify
        assert request.plan is None


class TestHTTPEndpoints:
    """The FastAPI app over the service."""

    @pytest.fixture
    def client(self):
        pytest.importorskip("fastapi")
        pytest.importorskip("httpx")
        from fastapi.testclient import TestClient

        from ..api.app import create_app

        return TestClient(create_app(APIService(settings=Settings(created_by="http-tests"))))

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_build(self, client):
        response = client.post("/api/v1/calc/build", json={"input": GS_INPUT, "plan": gs_plan()})
        assert response.status_code == 200
        body = response.json()
        assert body["used_plan"] is True
        assert body["status"] == "success"

    def test_invalid_input(self, client):
        response = client.post("/api/v1/calc/build", json={"input": {"game": "gs", "tables": {}}})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"

    def test_schema_violation(self, client):
        response = client.post("/api/v1/calc/validate", json={"input": {"game": "gs"}, "plan": {}})
        assert response.status_code == 422
