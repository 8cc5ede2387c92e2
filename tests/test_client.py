"""Tests for the polling API client."""

import json

import httpx
import pytest

from helpers import build_evaluation
from winery_eval.client import EvaluationClient, JobFailedError

BASE_URL = "http://testserver"


def _client(handler, max_polls=3):
    http = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return EvaluationClient(
        base_url=BASE_URL,
        poll_interval=0,
        max_polls=max_polls,
        timeout=60,
        http_client=http,
        sleep=lambda seconds: None,
    )


class Server:
    """Scripted responses for the analyze and status endpoints"""

    def __init__(self, statuses, sync_result=None):
        self.statuses = list(statuses)
        self.sync_result = sync_result
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/analyze-conversation":
            body = json.loads(request.content)
            if body.get("background"):
                return httpx.Response(202, json={"jobId": "job-1", "status": "pending"})
            return httpx.Response(200, json=self.sync_result)
        if request.url.path == "/api/check-job-status":
            assert request.url.params["jobId"] == "job-1"
            return httpx.Response(200, json=self.statuses.pop(0))
        return httpx.Response(404)


class TestEvaluationClient:
    def test_polls_until_completed(self, default_rubric):
        evaluation = build_evaluation(default_rubric)
        server = Server([
            {"id": "job-1", "status": "pending"},
            {"id": "job-1", "status": "processing"},
            {"id": "job-1", "status": "completed", "result": {"evaluation": evaluation}},
        ])

        with _client(server) as client:
            result = client.evaluate("Staff: hi", staff_name="Alex")

        assert result.staff_name == "Alex"
        submitted = json.loads(server.requests[0].content)
        assert submitted == {"markdown": "Staff: hi", "background": True, "staff_name": "Alex"}

    def test_failed_job_raises(self):
        server = Server([
            {"id": "job-1", "status": "api_error", "error": "CLAUDE_API_KEY environment variable is not set"},
        ])

        with pytest.raises(JobFailedError) as excinfo:
            _client(server).evaluate("Staff: hi")
        assert "CLAUDE_API_KEY" in str(excinfo.value)

    def test_falls_back_to_synchronous_call(self, default_rubric):
        server = Server(
            [{"id": "job-1", "status": "processing"}] * 2,
            sync_result=build_evaluation(default_rubric, staffName="Riley"),
        )

        result = _client(server, max_polls=2).evaluate("Staff: hi")

        assert result.staff_name == "Riley"
        last = json.loads(server.requests[-1].content)
        assert last["background"] is False

    def test_completed_without_result(self):
        server = Server([{"id": "job-1", "status": "completed"}])

        with pytest.raises(JobFailedError):
            _client(server).wait_for_job("job-1")

    def test_wait_returns_none_when_budget_spent(self):
        server = Server([{"id": "job-1", "status": "pending"}])
        assert _client(server, max_polls=1).wait_for_job("job-1") is None
