"""HTTP 接口测试：通过 TestClient 与依赖覆盖验证任务与引擎接口的响应与错误映射。"""

from __future__ import annotations

import asyncio
import importlib
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import StubEngine, StubLendingEngine, build_orchestrator
from modality_orchestrator.api.router import api_router
from modality_orchestrator.api.v1 import engines as engines_api
from modality_orchestrator.api.v1 import tasks as tasks_api
from modality_orchestrator.application.task_service import TaskApplicationService
from modality_orchestrator.config import Settings, get_settings
from modality_orchestrator.infra.repository.memory import InMemoryProcessingTaskRepository

PREFIX = get_settings().api_prefix
GENERAL_INTENT = json.dumps({"intent": "GENERAL_PROCESSING"})


@pytest.fixture
def general_engine() -> StubEngine:
    return StubEngine("general", chunks=["你好", "世界"])


@pytest.fixture
def client(general_engine: StubEngine) -> TestClient:
    repository = InMemoryProcessingTaskRepository()
    service = TaskApplicationService(
        settings=Settings(),
        repository=repository,
        orchestrator=build_orchestrator([StubLendingEngine(), general_engine], repository),
    )
    app = FastAPI()
    app.include_router(api_router)
    app.dependency_overrides[tasks_api._service] = lambda: service
    app.dependency_overrides[engines_api._service] = lambda: service
    return TestClient(app)


def _create(client: TestClient, **form) -> dict:
    data = {"input_modality": "TEXT", "output_modality": "TEXT", "prompt": "总结一下", **form}
    response = client.post(f"{PREFIX}/tasks", data=data)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_get_task(client: TestClient) -> None:
    created = _create(client, user_id="alice", parameters=json.dumps({"note": "x"}))

    assert created["status"] == "pending"
    assert created["user_id"] == "alice"
    assert created["parameters"] == {"note": "x"}

    fetched = client.get(f"{PREFIX}/tasks/{created['task_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["task_id"] == created["task_id"]


def test_create_with_process_flag_runs_task(client: TestClient) -> None:
    body = _create(client, prompt="我想借《算法导论》，学号2021001，姓名张三", process="true")

    assert body["status"] == "completed"
    assert body["result"]["content"] == "lending:ACTION_EXECUTE"
    assert body["parameters"]["intent"] == "ACTION_EXECUTE"
    assert body["processing_time_ms"] is not None


def test_create_with_uploaded_image(client: TestClient) -> None:
    response = client.post(
        f"{PREFIX}/tasks",
        data={"input_modality": "IMAGE", "output_modality": "TEXT"},
        files=[("files", ("cat.png", b"\x89PNG", "image/png"))],
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["prompt"] == "请总结图片内容"
    assert body["inputs"] == [
        {"file_name": "cat.png", "content_type": "image/png", "modality": "IMAGE", "size_bytes": 4}
    ]


@pytest.mark.parametrize(
    ("form", "status_code"),
    [
        ({"input_modality": "hologram"}, 400),
        ({"output_modality": "VIDEO"}, 400),
        ({"priority": "42"}, 400),
        ({"parameters": "not-json"}, 400),
        ({"parameters": "[1, 2]"}, 400),
    ],
)
def test_create_validation_errors(client: TestClient, form: dict, status_code: int) -> None:
    data = {"input_modality": "TEXT", "output_modality": "TEXT", "prompt": "总结", **form}
    response = client.post(f"{PREFIX}/tasks", data=data)
    assert response.status_code == status_code


def test_unknown_task_returns_404(client: TestClient) -> None:
    response = client.get(f"{PREFIX}/tasks/missing")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "TASK_NOT_FOUND"


def test_no_suitable_engine_returns_422(client: TestClient) -> None:
    created = client.post(
        f"{PREFIX}/tasks",
        data={"input_modality": "VIDEO", "output_modality": "TEXT"},
        files=[("files", ("clip.mp4", b"\x00\x01", "video/mp4"))],
    ).json()

    response = client.post(f"{PREFIX}/tasks/{created['task_id']}/process")

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "NO_SUITABLE_ENGINE"
    assert detail["status"] == "failed"


def test_engine_failure_returns_502_and_retry_recovers(client: TestClient, general_engine: StubEngine) -> None:
    general_engine.error = RuntimeError("upstream exploded")
    created = _create(client, parameters=GENERAL_INTENT)

    failed = client.post(f"{PREFIX}/tasks/{created['task_id']}/process")
    assert failed.status_code == 502
    assert failed.json()["detail"]["status"] == "failed"

    general_engine.error = None
    retried = client.post(f"{PREFIX}/tasks/{created['task_id']}/retry")
    assert retried.status_code == 200
    assert retried.json()["status"] == "completed"


def test_cancel_and_conflict(client: TestClient) -> None:
    created = _create(client)
    cancelled = client.post(f"{PREFIX}/tasks/{created['task_id']}/cancel")
    assert cancelled.json()["status"] == "cancelled"

    again = client.post(f"{PREFIX}/tasks/{created['task_id']}/process")
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "INVALID_STATUS"


def test_stream_endpoint_emits_chunks_and_done(client: TestClient) -> None:
    created = _create(client, parameters=GENERAL_INTENT)

    response = client.get(f"{PREFIX}/tasks/{created['task_id']}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    text = response.text
    assert text.count("event: chunk") == 2
    assert "event: done" in text
    assert '"status":"completed"' in text


def test_list_user_tasks_with_status_filter(client: TestClient) -> None:
    _create(client, user_id="bob")
    _create(client, user_id="bob", process="true")

    all_tasks = client.get(f"{PREFIX}/users/bob/tasks").json()
    completed = client.get(f"{PREFIX}/users/bob/tasks", params={"status": "COMPLETED"}).json()
    invalid = client.get(f"{PREFIX}/users/bob/tasks", params={"status": "sleeping"})

    assert len(all_tasks) == 2
    assert [task["status"] for task in completed] == ["completed"]
    assert invalid.status_code == 400


def test_engines_and_system_status(client: TestClient, general_engine: StubEngine) -> None:
    general_engine.healthy = False

    engines = client.get(f"{PREFIX}/engines").json()
    status = client.get(f"{PREFIX}/system/status").json()
    modalities = client.get(f"{PREFIX}/modalities").json()

    assert [engine["name"] for engine in engines] == ["lending", "general"]
    assert engines[0]["intent_aware"] is True
    assert status["available_engines"] == 1
    assert status["system_healthy"] is True
    assert {item["code"] for item in modalities} == {"TEXT", "IMAGE", "AUDIO", "VIDEO", "DOCUMENT"}
    assert client.post(f"{PREFIX}/system/purge").json() == {"removed": 0}


def test_application_health_and_request_id(tmp_path, monkeypatch) -> None:
    """应用入口的健康检查反映引擎状态，并回写请求 ID。"""
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    get_settings.cache_clear()
    from modality_orchestrator.application.container import shutdown_container_resources
    from modality_orchestrator.infra.logging.setup import shutdown_logging

    main = importlib.import_module("modality_orchestrator.main")
    try:
        with TestClient(main.app) as app_client:
            response = app_client.get("/health", headers={"X-Request-Id": "req-123"})
            assert response.status_code == 200
            assert response.json() == {"status": "ok", "available_engines": 1}
            assert response.headers["X-Request-Id"] == "req-123"
            assert app_client.get("/healthz").json() == {"status": "ok"}
    finally:
        asyncio.run(shutdown_container_resources())
        shutdown_logging()
        get_settings.cache_clear()
