"""
Locust load tests for the telehook API.

Run against a local server:
    uv run uvicorn telehook.app:create_app --factory --host 0.0.0.0 --port 8000

Trigger traffic needs an existing webhook; pass its public id:
    TELEHOOK_WEBHOOK_UUID=<uuid> uv run locust -f load_tests/locustfile.py --headless \
        -u 50 -r 10 --run-time 60s --host http://localhost:8000

Interactive web UI:
    uv run locust -f load_tests/locustfile.py --host http://localhost:8000
"""

import os
import uuid

from locust import HttpUser, between, task

WEBHOOK_UUID = os.environ.get("TELEHOOK_WEBHOOK_UUID", "")


class TriggerUser(HttpUser):
    """Simulates a producer firing events at one webhook."""

    wait_time = between(0.05, 0.2)
    weight = 3

    @task
    def trigger(self) -> None:
        if not WEBHOOK_UUID:
            return
        payload = {"event": "order.created", "order": {"id": str(uuid.uuid4()), "total": 99.5}}
        with self.client.post(f"/api/trigger/{WEBHOOK_UUID}", json=payload, catch_response=True) as resp:
            if resp.status_code in (502, 504):
                resp.success()  # upstream Telegram trouble, not ours


class CaptureUser(HttpUser):
    """Simulates the bot opening a capture session and a producer filling it."""

    wait_time = between(0.1, 0.5)
    weight = 1

    @task(3)
    def capture_round_trip(self) -> None:
        resp = self.client.post("/api/payload/capture/start", json={"user_id": 1})
        if resp.status_code != 200:
            return
        session = resp.json()
        self.client.post(session["capture_url"], json={"event": "sample"}, name="/api/payload/capture/[id]")
        self.client.get(
            f"/api/payload/capture/status/{session['session_id']}",
            name="/api/payload/capture/status/[id]",
        )

    @task(1)
    def render_preview(self) -> None:
        self.client.post(
            "/api/templates/render",
            json={"template": "Order {{ order.id }}", "sample_data": {"order": {"id": 1}}},
        )

    @task(1)
    def get_health(self) -> None:
        self.client.get("/health")
