"""
API endpoint tests
"""

import pytest
import pytest_asyncio
from unittest.mock import patch
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import SQLAlchemyError
from api.main import app
from api.dependencies import get_db, get_pipeline_config, get_task_graph
from pipeline.tasks import build_stream_task_graph, SILVER_TASK, GOLD_TASK
from pipeline.loaders.bronze_loader import BronzeLoader
from pipeline.loaders.staging_merger import UpsertMerger


@pytest_asyncio.fixture
async def client(session_maker, pipeline_config):
    """Create test client with database, config and task graph overrides"""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    graph = build_stream_task_graph(session_maker, pipeline_config)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipeline_config] = lambda: pipeline_config
    app.dependency_overrides[get_task_graph] = lambda: graph

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def loaded_bronze(session_maker, employee_records):
    async with session_maker() as session:
        await BronzeLoader(session).load_records(employee_records)


@pytest.mark.asyncio
async def test_root_endpoint(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["health"] == "/health"


@pytest.mark.asyncio
async def test_health_endpoint_database_connected(client):
    """Test health endpoint returns database status"""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert data["checkpoints"] == []
    assert data["pending_changes"] is None


@pytest.mark.asyncio
async def test_health_reports_checkpoint_and_pending_changes(client, loaded_bronze):
    await client.post("/pipeline/stages/load_staging", json={"etl_run_id": "run-1"})

    data = (await client.get("/health")).json()

    assert data["total_consumers"] == 1
    assert data["checkpoints"][0]["consumer_name"] == "silver_staging"
    assert data["checkpoints"][0]["status"] == "success"
    assert data["pending_changes"] is False


@pytest.mark.asyncio
async def test_health_unhealthy_when_consumer_failed(client, loaded_bronze):
    with patch.object(UpsertMerger, "_apply_event", side_effect=SQLAlchemyError("boom")):
        await client.post("/pipeline/stages/load_staging", json={"etl_run_id": "run-1"})

    data = (await client.get("/health")).json()

    assert data["failed_consumers"] == 1
    assert data["status"] == "unhealthy"
    assert data["pending_changes"] is True


@pytest.mark.asyncio
async def test_run_stage_success(client, loaded_bronze):
    """Test a stage run returns its result under the caller's run id"""
    response = await client.post(
        "/pipeline/stages/load_staging",
        json={"etl_run_id": "api-run-1"},
        headers={"X-Request-ID": "req_test"}
    )

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req_test"
    body = response.json()
    assert body["request_id"] == "req_test"
    assert body["data"]["status"] == "SUCCESS"
    assert body["data"]["run_id"] == "api-run-1"
    assert body["data"]["message"].endswith("Rows affected: 4")


@pytest.mark.asyncio
async def test_run_stage_generates_run_id(client):
    response = await client.post("/pipeline/stages/run_quality_checks")

    assert response.status_code == 200
    assert response.json()["data"]["run_id"]


@pytest.mark.asyncio
async def test_run_stage_failure_returns_500(client, loaded_bronze):
    """Test a failed stage answers 500 with the failed result"""
    with patch.object(UpsertMerger, "_apply_event", side_effect=SQLAlchemyError("constraint violated")):
        response = await client.post("/pipeline/stages/load_staging", json={"etl_run_id": "api-run-2"})

    assert response.status_code == 500
    data = response.json()["data"]
    assert data["status"] == "FAILED"
    assert data["error_code"] == "LOD-330"
    assert data["message"].startswith("ERROR in silver load: ")

    run = (await client.get("/pipeline/runs/api-run-2")).json()["data"]
    assert [e["status"] for e in run["events"]] == ["STARTED", "FAILED"]


@pytest.mark.asyncio
async def test_unknown_stage(client):
    response = await client.post("/pipeline/stages/silver")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_task_graph_run_and_detail(client, loaded_bronze):
    """Test the graph runs silver then gold and both are visible by run id"""
    response = await client.post("/pipeline/runs")

    assert response.status_code == 200
    data = response.json()["data"]
    assert [o["task_name"] for o in data["outcomes"]] == [SILVER_TASK, GOLD_TASK]
    assert all(o["state"] == "SUCCEEDED" for o in data["outcomes"])

    detail = (await client.get(f"/pipeline/runs/{data['run_id']}")).json()["data"]
    assert [t["task_name"] for t in detail["tasks"]] == [SILVER_TASK, GOLD_TASK]
    assert [e["stage"] for e in detail["events"]] == [
        "silver_load", "silver_load", "gold_materialize", "gold_materialize"
    ]


@pytest.mark.asyncio
async def test_unknown_run_id(client):
    response = await client.get("/pipeline/runs/does-not-exist")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_gold_endpoints(client, loaded_bronze):
    """Test gold rows are served from the published snapshot"""
    assert (await client.get("/gold/demographics")).json()["data"] == []

    await client.post("/pipeline/runs")
    demographics = (await client.get("/gold/demographics")).json()["data"]
    survey = (await client.get("/gold/survey?strategy=stream")).json()["data"]

    assert [row["department"] for row in demographics] == ["Finance", "Produce"]
    assert demographics[0]["num_employees"] == 2
    assert survey[0]["avg_communication_score"] == pytest.approx(4.0)
    assert survey[0]["source_object"] == "silver.employee_data_stg"


@pytest.mark.asyncio
async def test_dynamic_refresh_and_gold(client, loaded_bronze):
    response = await client.post("/pipeline/dynamic/refresh")

    assert response.status_code == 200
    assert {r["refresh_action"] for r in response.json()["data"]} == {"FULL"}

    forced = (await client.post("/pipeline/dynamic/refresh", json={"force": True})).json()["data"]
    assert {r["refresh_action"] for r in forced} == {"FULL"}

    rows = (await client.get("/gold/demographics?strategy=dynamic")).json()["data"]
    assert [row["department"] for row in rows] == ["Finance", "Produce"]
    assert rows[0]["source_object"] == "silver.dt_employee_data_stg"

    history = (await client.get("/pipeline/dynamic/history?limit=3")).json()["data"]
    assert len(history) == 3


@pytest.mark.asyncio
async def test_invalid_strategy(client):
    response = await client.get("/gold/survey?strategy=batch")

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_quality_results_and_summary(client, loaded_bronze):
    await client.post("/pipeline/stages/run_quality_checks", json={"etl_run_id": "dq-1"})

    results = (await client.get("/quality/results?check_name=null_employee_number")).json()["data"]
    summary = (await client.get("/pipeline/summary?days=1")).json()["data"]

    assert len(results) == 1
    assert results[0]["issue_count"] == 0
    assert results[0]["etl_run_id"] == "dq-1"
    assert {s["stage"] for s in summary["stages"]} == {"quality_checks"}
    assert {q["check_name"] for q in summary["quality_checks"]} == {
        "null_employee_number", "invalid_survey_range"
    }
