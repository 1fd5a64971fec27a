import asyncio
from unittest.mock import MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config import DispatchMode, settings
from main import app
from services.auth import get_current_user_id

from tests.fakes import ANALYSIS_JSON, FakeProvider, WorkerStub, make_container, sample_transcript

client = TestClient(app)


def install(container, user_id="user-1"):
    app.state.services = container
    app.dependency_overrides[get_current_user_id] = lambda: user_id
    return container


@pytest.fixture
def services(supabase, worker):
    provider = FakeProvider("groq", transcript=sample_transcript(), responses=[ANALYSIS_JSON])
    yield install(make_container(supabase, [provider], worker, mode=DispatchMode.SYNC))
    app.dependency_overrides.clear()


@pytest.fixture
def no_ai_services(supabase, worker):
    yield install(make_container(supabase, [], worker, mode=DispatchMode.SYNC))
    app.dependency_overrides.clear()


def test_health_check_endpoint():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "Hedcut Core"


def test_health_reports_render_worker(services, worker):
    data = client.get("/health").json()
    assert data["render_worker"] is True
    assert worker.requests[-1].url.path == "/health"


def test_health_with_unreachable_worker(supabase):
    worker = WorkerStub([httpx.ConnectError("connection refused")])
    install(make_container(supabase, [], worker, mode=DispatchMode.SYNC))
    try:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["render_worker"] is False
    finally:
        app.dependency_overrides.clear()


def test_cors_allows_configured_origin_only():
    preflight = {"Access-Control-Request-Method": "GET"}
    allowed = client.options("/health", headers={"Origin": settings.cors_origins[0], **preflight})
    assert allowed.status_code == 200
    assert allowed.headers["access-control-allow-origin"] == settings.cors_origins[0]
    assert allowed.headers["access-control-allow-credentials"] == "true"

    denied = client.options("/health", headers={"Origin": "https://elsewhere.test", **preflight})
    assert "access-control-allow-origin" not in denied.headers


def test_config_endpoint():
    response = client.get("/config")
    assert response.status_code == 200
    data = response.json()
    assert data["dispatch_mode"] in ("sync", "async", "queue")
    assert set(data["keys"]) == {"groq", "gemini", "supabase", "redis"}


def test_presets_endpoint():
    response = client.get("/api/presets")
    assert response.status_code == 200
    assert len(response.json()) == 6


# ----- dispatch -----

def test_process_requires_job_id(services):
    response = client.post("/api/jobs/process", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "Job ID is required"}


def test_process_rejects_non_json_body(services):
    response = client.post("/api/jobs/process", content=b"not json", headers={"content-type": "application/json"})
    assert response.status_code == 400


def test_process_unknown_job(services):
    response = client.post("/api/jobs/process", json={"jobId": "missing"})
    assert response.status_code == 404
    assert response.json() == {"error": "Job not found: missing"}


def test_process_finished_job_is_conflict(services, supabase):
    job_id = supabase.seed_job(status="COMPLETED")
    response = client.post("/api/jobs/process", json={"jobId": job_id})
    assert response.status_code == 409


def test_process_without_ai_services(no_ai_services, supabase):
    job_id = supabase.seed_job()
    response = client.post("/api/jobs/process", json={"jobId": job_id})
    assert response.status_code == 500
    assert "No AI services configured" in response.json()["error"]
    assert supabase.row(job_id)["status"] == "FAILED"


def test_process_sync_mode_completes(services, supabase):
    job_id = supabase.seed_job()
    response = client.post("/api/jobs/process", json={"jobId": job_id})
    assert response.status_code == 200
    data = response.json()
    assert data == {
        "success": True,
        "status": "COMPLETED",
        "jobId": job_id,
        "message": "Video processed successfully",
        "servicesUsed": ["groq"],
    }
    assert supabase.row(job_id)["status"] == "COMPLETED"


def test_process_render_failure_reports_500(supabase):
    worker = WorkerStub([httpx.Response(500, text="disk full")])
    provider = FakeProvider("groq", transcript=sample_transcript(), responses=[ANALYSIS_JSON])
    install(make_container(supabase, [provider], worker, mode=DispatchMode.SYNC))
    try:
        job_id = supabase.seed_job()
        response = client.post("/api/jobs/process", json={"jobId": job_id})
        assert response.status_code == 500
        assert "disk full" in response.json()["error"]
        assert supabase.row(job_id)["status"] == "FAILED"
    finally:
        app.dependency_overrides.clear()


def test_process_requires_api_key_when_configured(services, supabase):
    job_id = supabase.seed_job()
    with patch.object(settings, "api_secret", "s3cret"):
        assert client.post("/api/jobs/process", json={"jobId": job_id}).status_code == 403
        response = client.post("/api/jobs/process", json={"jobId": job_id}, headers={"X-API-Key": "s3cret"})
    assert response.status_code == 200


# ----- jobs -----

def test_upload_creates_dispatchable_job(services, supabase):
    response = client.post(
        "/api/jobs",
        files={"file": ("my clip.mp4", b"video-bytes", "video/mp4")},
        data={"job_name": "Launch", "preset": "cinematic"},
    )
    assert response.status_code == 200
    job_id = response.json()["job_id"]

    row = supabase.row(job_id)
    path = f"user-1/{job_id}/my_clip.mp4"
    assert row["status"] == "UPLOADING"
    assert row["current_step"] == "Uploaded"
    assert row["input_video_path"] == path
    assert row["job_name"] == "Launch"
    assert row["preferences_json"]["preset"] == "cinematic"
    assert supabase.storage.objects[("raw-videos", path)] == b"video-bytes"

    assert client.post("/api/jobs/process", json={"jobId": job_id}).status_code == 200


def test_upload_rejects_bad_files(services):
    bad_type = client.post("/api/jobs", files={"file": ("notes.txt", b"text", "text/plain")})
    assert bad_type.status_code == 400
    empty = client.post("/api/jobs", files={"file": ("clip.mp4", b"", "video/mp4")})
    assert empty.status_code == 400
    bad_prefs = client.post(
        "/api/jobs",
        files={"file": ("clip.mp4", b"video", "video/mp4")},
        data={"preferences": "{not json"},
    )
    assert bad_prefs.status_code == 400


def test_upload_too_large(services):
    with patch.object(settings, "max_upload_mb", 0.000001):
        response = client.post("/api/jobs", files={"file": ("clip.mp4", b"x" * 1024, "video/mp4")})
    assert response.status_code == 413


def test_get_job_is_owner_only(services, supabase):
    own = supabase.seed_job(user_id="user-1")
    other = supabase.seed_job(user_id="user-2")

    response = client.get(f"/api/jobs/{own}")
    assert response.status_code == 200
    assert response.json()["status"] == "UPLOADING"
    assert client.get(f"/api/jobs/{other}").status_code == 404


def test_list_jobs_filters_by_status(services, supabase):
    supabase.seed_job(user_id="user-1", status="COMPLETED")
    supabase.seed_job(user_id="user-1", status="FAILED")
    supabase.seed_job(user_id="user-2", status="COMPLETED")

    response = client.get("/api/jobs", params={"status": "COMPLETED"})
    assert response.status_code == 200
    assert [job["status"] for job in response.json()] == ["COMPLETED"]
    assert len(client.get("/api/jobs").json()) == 2


def test_update_preferences(services, supabase):
    job_id = supabase.seed_job()
    response = client.put(f"/api/jobs/{job_id}/preferences", json={"customPrompt": "short and sweet"})
    assert response.status_code == 200
    assert supabase.row(job_id)["preferences_json"]["customPrompt"] == "short and sweet"

    locked = supabase.seed_job(status="RENDERING")
    assert client.put(f"/api/jobs/{locked}/preferences", json={}).status_code == 409


def test_cancel_endpoint(services, supabase):
    queued = supabase.seed_job(status="QUEUED")
    response = client.post(f"/api/jobs/{queued}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    rendering = supabase.seed_job(status="RENDERING")
    assert client.post(f"/api/jobs/{rendering}/cancel").status_code == 409
    assert client.post("/api/jobs/missing/cancel").status_code == 404


def test_output_url(services, supabase):
    job_id = supabase.seed_job(status="COMPLETED", output_video_path="user-1/j/output.mp4")
    supabase.storage.put("processed-videos", "user-1/j/output.mp4", b"rendered")

    response = client.get(f"/api/jobs/{job_id}/output-url")
    assert response.status_code == 200
    assert response.json()["url"].startswith("https://storage.test/processed-videos/")

    pending = supabase.seed_job()
    assert client.get(f"/api/jobs/{pending}/output-url").status_code == 400


def test_render_callbacks(services, supabase):
    job_id = supabase.seed_job(status="RENDERING", progress_percentage=50)

    progress = client.post(f"/api/jobs/{job_id}/render-callback", json={"status": "progress", "progress": 75})
    assert progress.status_code == 200
    assert progress.json()["progress_percentage"] == 75

    assert client.post(
        f"/api/jobs/{job_id}/render-callback", json={"status": "progress", "progress": 120}
    ).status_code == 400
    assert client.post(f"/api/jobs/{job_id}/render-callback", json={"status": "completed"}).status_code == 400

    done = client.post(
        f"/api/jobs/{job_id}/render-callback",
        json={"status": "completed", "output_path": f"user-1/{job_id}/output.mp4"},
    )
    assert done.status_code == 200
    assert done.json()["status"] == "COMPLETED"

    again = client.post(f"/api/jobs/{job_id}/render-callback", json={"status": "failed", "error": "late"})
    assert again.status_code == 409


# ----- queue -----

def test_queue_endpoints_disabled(services):
    assert client.get("/api/queue/metrics").status_code == 503


def test_queue_reads_run_in_threadpool(services):
    seen = []

    def metrics():
        try:
            asyncio.get_running_loop()
            seen.append("loop")
        except RuntimeError:
            seen.append("thread")
        return {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0, "total": 0}

    queue = MagicMock()
    queue.metrics.side_effect = metrics
    services.render_queue = queue

    assert client.get("/api/queue/metrics").status_code == 200
    assert seen == ["thread"]


def test_queue_endpoints(services):
    queue = MagicMock()
    queue.metrics.return_value = {"waiting": 1, "active": 0, "completed": 0, "failed": 0, "delayed": 0, "total": 1}
    queue.status.return_value = None
    services.render_queue = queue

    assert client.get("/api/queue/metrics").json()["total"] == 1
    assert client.get("/api/queue/some-job").status_code == 404


# ----- realtime -----

def test_websocket_rejects_unknown_token(services, supabase):
    job_id = supabase.seed_job()
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/api/jobs/ws/{job_id}?token=bad") as websocket:
            websocket.receive_json()
    assert exc.value.code == 4404


def test_websocket_sends_initial_snapshot(services, supabase):
    supabase.auth.tokens["good-token"] = "user-1"
    job_id = supabase.seed_job(user_id="user-1")
    with client.websocket_connect(f"/api/jobs/ws/{job_id}?token=good-token") as websocket:
        data = websocket.receive_json()
    assert data["id"] == job_id
    assert data["status"] == "UPLOADING"
