"""Tests for the FastAPI API endpoints."""

import pytest
from fastapi.testclient import TestClient

from goap_kernel.api.app import create_app
from goap_kernel.models.config import PlannerConfig
from goap_kernel.patterns.store import PatternStore

ACTIONS = [
    {"id": "build", "effects": {"built": True}, "cost": {"base_units": 1.0}},
    {
        "id": "deploy",
        "preconditions": {"built": True},
        "effects": {"deployed": True},
        "cost": {"base_units": 3.0},
    },
]

PLAN_REQUEST = {
    "current_state": {"built": False, "deployed": False},
    "goal_state": {"deployed": True},
    "actions": ACTIONS,
}


@pytest.fixture
def client():
    """Create a test client with a fresh pattern store."""
    app = create_app(store=PatternStore(db_path=":memory:"))
    return TestClient(app)


def _plan_and_succeed(client) -> dict:
    plan = client.post("/plan", json=PLAN_REQUEST).json()
    client.post(f"/plans/{plan['id']}/outcome", json={
        "success": True,
        "actual_cost": plan["total_cost"],
        "achieved_goal": True,
    })
    return plan


class TestPlanningEndpoints:
    def test_plan(self, client):
        response = client.post("/plan", json=PLAN_REQUEST)
        assert response.status_code == 200
        data = response.json()
        assert data["actions"] == ["build", "deploy"]
        assert data["total_cost"] == 4.0
        assert data["source_pattern_id"] is None

    def test_get_plan(self, client):
        plan = client.post("/plan", json=PLAN_REQUEST).json()
        assert client.get(f"/plans/{plan['id']}").json()["id"] == plan["id"]
        assert client.get("/plans/plan_missing").status_code == 404

    def test_oldest_plans_evicted(self):
        client = TestClient(create_app(store=PatternStore(db_path=":memory:"), max_tracked_plans=2))
        ids = [client.post("/plan", json=PLAN_REQUEST).json()["id"] for _ in range(3)]

        assert client.get(f"/plans/{ids[0]}").status_code == 404
        assert client.get(f"/plans/{ids[1]}").status_code == 200
        assert client.get(f"/plans/{ids[2]}").status_code == 200

    def test_unreachable_goal_is_422(self, client):
        response = client.post("/plan", json={**PLAN_REQUEST, "goal_state": {"missing": True}})
        assert response.status_code == 422

    def test_timeout_is_408(self):
        app = create_app(config=PlannerConfig(max_search_depth=1))
        client = TestClient(app)
        response = client.post("/plan", json=PLAN_REQUEST)
        assert response.status_code == 408

    def test_outcome_learns_then_reuses(self, client):
        plan = client.post("/plan", json=PLAN_REQUEST).json()
        response = client.post(f"/plans/{plan['id']}/outcome", json={
            "success": True,
            "actual_cost": 4.0,
            "achieved_goal": True,
        })
        assert response.status_code == 200
        result = response.json()
        assert result["action"] == "pattern_learned"

        reused = client.post("/plan", json=PLAN_REQUEST).json()
        assert reused["source_pattern_id"] == result["pattern_id"]

    def test_outcome_unknown_plan(self, client):
        response = client.post("/plans/plan_missing/outcome", json={
            "success": True,
            "actual_cost": 1.0,
            "achieved_goal": True,
        })
        assert response.status_code == 404

    def test_stats(self, client):
        _plan_and_succeed(client)
        client.post("/plan", json=PLAN_REQUEST)
        stats = client.get("/stats").json()
        assert stats["total_plans_generated"] == 2
        assert stats["pattern_based_plans"] == 1


class TestPatternEndpoints:
    def test_list_and_get(self, client):
        _plan_and_succeed(client)
        patterns = client.get("/patterns").json()
        assert len(patterns) == 1
        pattern_id = patterns[0]["id"]

        pattern = client.get(f"/patterns/{pattern_id}").json()
        assert pattern["action_sequence"]["actions"] == ["build", "deploy"]
        assert client.get("/patterns/pat_missing").status_code == 404

    def test_pattern_stats(self, client):
        _plan_and_succeed(client)
        stats = client.get("/patterns/stats").json()
        assert stats["total_patterns"] == 1
        assert stats["average_confidence"] == pytest.approx(0.8)

    def test_pattern_outcomes(self, client):
        _plan_and_succeed(client)
        pattern_id = client.get("/patterns").json()[0]["id"]
        reused = client.post("/plan", json=PLAN_REQUEST).json()
        client.post(f"/plans/{reused['id']}/outcome", json={
            "success": False, "actual_cost": 2.0, "achieved_goal": False,
        })
        history = client.get(f"/patterns/{pattern_id}/outcomes").json()
        assert len(history) == 1
        assert history[0]["success"] is False


class TestMaintenanceAndConfig:
    def test_consolidate(self, client):
        _plan_and_succeed(client)
        report = client.post("/maintenance/consolidate").json()
        assert report["scanned"] == 1
        status = client.get("/maintenance/status").json()
        assert status["schedule"] == "0 * * * *"
        assert status["last_report"]["scanned"] == 1

    def test_get_and_update_config(self, client):
        config = client.get("/config").json()
        assert config["pattern_match_threshold"] == 0.7

        config["enable_pattern_learning"] = False
        response = client.put("/config", json=config)
        assert response.status_code == 200

        _plan_and_succeed(client)
        assert client.get("/patterns").json() == []
