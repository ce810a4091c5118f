"""
Assignment API Client Tests

Runs AssignmentApiClient against a local aiohttp test server.
"""

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from connectors.assignment_api import (
    AssignmentApiClient,
    AssignmentApiConfig,
    AssignmentApiError,
    RetryConfig,
)
from core.audit.history import AssignmentPersistenceError, create_history_record
from core.models.assignment import OrganizationCoaConfig


def make_config():
    return OrganizationCoaConfig(organization_id="org-1", assigned_by="u1", country_template="india")


async def call_api(handlers, operation, token=None):
    """Start a test server with handlers, run operation(client), return (result, requests)."""
    requests = []

    def recording(handler):
        async def wrapped(request):
            body = await request.json() if request.can_read_body else None
            requests.append({
                "method": request.method,
                "path": request.path,
                "auth": request.headers.get("Authorization"),
                "body": body,
            })
            return await handler(request)
        return wrapped

    app = web.Application()
    for method, path, handler in handlers:
        app.router.add_route(method, path, recording(handler))

    server = test_utils.TestServer(app)
    await server.start_server()
    client = AssignmentApiClient(AssignmentApiConfig(
        base_url=str(server.make_url("/")),
        token=token,
        retry_config=RetryConfig(max_retries=2, base_delay=0),
    ))
    try:
        result = await operation(client)
    finally:
        await client.close()
        await server.close()
    return result, requests


class TestReads:

    def test_not_found_means_nothing_stored(self):
        async def missing(request):
            return web.json_response({"error": "not found"}, status=404)

        async def run(client):
            return await client.get_assignment("org-1"), await client.get_history("org-1")

        (config, history), _ = asyncio.run(call_api([
            ("GET", "/api/v1/coa/assignment/org-1", missing),
            ("GET", "/api/v1/coa/assignment/org-1/history", missing),
        ], run))
        assert config is None
        assert history == []

    def test_enveloped_payload_and_auth_header(self):
        stored = make_config()

        async def get(request):
            return web.json_response({"data": stored.model_dump(mode="json")})

        config, requests = asyncio.run(call_api(
            [("GET", "/api/v1/coa/assignment/org-1", get)],
            lambda client: client.get_assignment("org-1"),
            token="secret",
        ))
        assert config.config_id == stored.config_id
        assert requests[0]["auth"] == "Bearer secret"

    def test_retries_transient_failures(self):
        attempts = []

        async def flaky(request):
            attempts.append(1)
            if len(attempts) < 3:
                return web.Response(status=503, text="busy")
            return web.json_response([])

        history, _ = asyncio.run(call_api(
            [("GET", "/api/v1/coa/assignment/org-1/history", flaky)],
            lambda client: client.get_history("org-1"),
        ))
        assert history == []
        assert len(attempts) == 3

    def test_gives_up_after_max_retries(self):
        async def down(request):
            return web.Response(status=502, text="bad gateway")

        with pytest.raises(AssignmentApiError) as exc:
            asyncio.run(call_api(
                [("GET", "/api/v1/coa/assignment/org-1", down)],
                lambda client: client.get_assignment("org-1"),
            ))
        assert exc.value.status_code == 502

    def test_malformed_payload_raises(self):
        async def bad(request):
            return web.json_response({"unexpected": True})

        with pytest.raises(AssignmentApiError):
            asyncio.run(call_api(
                [("GET", "/api/v1/coa/assignment/org-1", bad)],
                lambda client: client.get_assignment("org-1"),
            ))


class TestSave:

    def test_posts_config_and_history(self):
        config = make_config()
        history = create_history_record(config, accounts_affected=3)

        async def save(request):
            return web.Response(status=204)

        saved, requests = asyncio.run(call_api(
            [("POST", "/api/v1/coa/assignment", save)],
            lambda client: client.save_assignment(config, history),
        ))
        assert saved is config
        body = requests[0]["body"]
        assert body["config"]["config_id"] == config.config_id
        assert body["history"]["accounts_affected"] == 3

    def test_client_errors_are_persistence_errors(self):
        config = make_config()

        async def reject(request):
            return web.json_response({"error": "invalid"}, status=400)

        with pytest.raises(AssignmentPersistenceError) as exc:
            asyncio.run(call_api(
                [("POST", "/api/v1/coa/assignment", reject)],
                lambda client: client.save_assignment(config, create_history_record(config)),
            ))
        assert exc.value.status_code == 400
        assert exc.value.organization_id == "org-1"


def test_url_building_quotes_ids():
    config = AssignmentApiConfig(base_url="https://erp.example/")
    assert config.url("assignment", "org 1/x") == "https://erp.example/api/v1/coa/assignment/org%201%2Fx"


def test_retry_delay_is_capped():
    retry = RetryConfig(base_delay=1.0, max_delay=5.0)
    assert retry.get_delay(0) == 1.0
    assert retry.get_delay(2) == 4.0
    assert retry.get_delay(10) == 5.0
