"""
Unit Tests for the Connector Lifecycle
======================================

Tests for wdc_gateway/connector/lifecycle.py

Test Coverage:
--------------
1. Phase handling (interactive, gatherData, unknown phases)
2. Auth phase token validation and best-effort acquisition
3. Schema declaration (concurrent, all-or-nothing, validated)
4. Paged data retrieval through the proxy path
5. Post-processing outcomes
6. Teardown

Run tests:
----------
    pytest wdc_gateway/tests/test_lifecycle.py -v
"""

import json
import time
from typing import List
from unittest.mock import AsyncMock, patch

import httpx
import jwt
import pytest

from wdc_gateway.config import Settings
from wdc_gateway.connector.credentials import CredentialStore
from wdc_gateway.connector.lifecycle import ConnectorLifecycle
from wdc_gateway.connector.tables import Table
from wdc_gateway.models import ConnectorPhase

TOKEN_CHECK_ENDPOINT = "some/predictable/endpoint"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def gateway_requests() -> List[httpx.Request]:
    """Requests the mocked gateway received"""
    return []


@pytest.fixture
def acquire_token():
    return AsyncMock()


def make_connector(settings, gateway_requests, handler, acquire_token, token=None, **kwargs):
    """Build a connector whose gateway calls are answered by handler"""
    def record(request: httpx.Request) -> httpx.Response:
        gateway_requests.append(request)
        return handler(request)

    tables = kwargs.pop("tables", [
        Table("tableId", "your/endpoint", {"column1": "columnOneValue", "column2": "columnTwoValue"}),
        Table("forms", "forms", {"form_id": "id"}, incremental=True),
    ])

    return ConnectorLifecycle(
        tables=tables,
        credentials=CredentialStore(token),
        settings=settings,
        acquire_token=acquire_token,
        transport=httpx.MockTransport(record),
        **kwargs
    )


def descriptor_response(request: httpx.Request) -> httpx.Response:
    descriptors = {
        "/schema/table_id.json": {"id": "tableId", "columns": [{"id": "column1", "dataType": "int"}]},
        "/schema/forms.json": {"id": "forms", "incrementColumnId": "id"},
        "/schema/both.json": [
            {"id": "forms"},
            {"id": "tableId", "dependsOn": ["forms"]},
        ],
        "/schema/cycle.json": [
            {"id": "forms", "dependsOn": ["tableId"]},
            {"id": "tableId", "dependsOn": ["forms"]},
        ],
        "/schema/unknown.json": {"id": "notRegistered"},
    }
    if request.url.path in descriptors:
        return httpx.Response(200, json=descriptors[request.url.path])
    if request.url.path == "/schema/broken.json":
        return httpx.Response(200, content=b"{not json")
    return httpx.Response(404)


def expiring_jwt(seconds_from_now: int) -> str:
    return jwt.encode({"sub": "user", "exp": int(time.time()) + seconds_from_now}, "secret", algorithm="HS256")


# ============================================================================
# Phase Tests
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("phase", [ConnectorPhase.INTERACTIVE, "interactive", "gatherData", "futurePhase"])
async def test_non_auth_phases_resolve_without_action(settings, gateway_requests, acquire_token, phase):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(500), acquire_token)

    outcome = await connector.setup(phase)

    assert outcome.ok
    assert gateway_requests == []
    acquire_token.assert_not_awaited()


# ============================================================================
# Auth Phase Tests
# ============================================================================

@pytest.mark.asyncio
async def test_auth_without_token_acquires_once(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(200, json={}), acquire_token)

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    acquire_token.assert_awaited_once_with(connector.credentials)
    assert gateway_requests == []


@pytest.mark.asyncio
async def test_auth_with_valid_token_skips_acquisition(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json={"valid": True}), acquire_token, token="abc"
    )

    outcome = await connector.setup("auth")

    assert outcome.ok
    acquire_token.assert_not_awaited()
    assert len(gateway_requests) == 1
    check = gateway_requests[0]
    assert check.url.path == "/proxy"
    assert check.url.params["endpoint"] == TOKEN_CHECK_ENDPOINT
    assert check.headers["Authorization"] == "token abc"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401),
        httpx.Response(403, json={"error": "expired"}),
        httpx.Response(200, json={"valid": False}),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, content=b"<html>login</html>"),
    ],
)
async def test_auth_with_rejected_token_acquires_once(settings, gateway_requests, acquire_token, response):
    connector = make_connector(settings, gateway_requests, lambda r: response, acquire_token, token="stale")

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    acquire_token.assert_awaited_once()


@pytest.mark.asyncio
async def test_auth_check_transport_failure_acquires_once(settings, gateway_requests, acquire_token):
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    connector = make_connector(settings, gateway_requests, handler, acquire_token, token="abc")

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    acquire_token.assert_awaited_once()


@pytest.mark.asyncio
async def test_auth_resolves_when_acquisition_fails(settings, gateway_requests):
    failing = AsyncMock(side_effect=RuntimeError("user closed the login window"))
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(401), failing, token="stale")

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    failing.assert_awaited_once()
    # Best effort: the stale token is still stored
    assert connector.get_password() == "stale"


@pytest.mark.asyncio
async def test_auth_expiring_jwt_acquires_without_token_check(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json={"valid": True}),
        acquire_token, token=expiring_jwt(60)
    )

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    acquire_token.assert_awaited_once()
    assert gateway_requests == []


@pytest.mark.asyncio
async def test_auth_long_lived_jwt_is_checked(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json={"valid": True}),
        acquire_token, token=expiring_jwt(3600)
    )

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    acquire_token.assert_not_awaited()
    assert len(gateway_requests) == 1


@pytest.mark.asyncio
async def test_auth_custom_token_check(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json={"someConstraintPasses": True}),
        acquire_token, token="abc",
        token_check=lambda payload: payload.get("someConstraintPasses") is True,
    )

    outcome = await connector.setup(ConnectorPhase.AUTH)

    assert outcome.ok
    acquire_token.assert_not_awaited()


@pytest.mark.asyncio
async def test_separate_connectors_do_not_share_credentials(settings, gateway_requests):
    async def acquire(store):
        store.set("fresh-token")

    first = make_connector(settings, gateway_requests, lambda r: httpx.Response(200, json={}), acquire)
    second = make_connector(settings, gateway_requests, lambda r: httpx.Response(200, json={}), acquire, token="other")

    await first.setup(ConnectorPhase.AUTH)

    assert first.get_password() == "fresh-token"
    assert second.get_password() == "other"


# ============================================================================
# Schema Tests
# ============================================================================

@pytest.mark.asyncio
async def test_schema_combines_descriptors_in_order(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, descriptor_response, acquire_token,
        descriptor_paths=["/schema/table_id.json", "/schema/forms.json"],
    )

    outcome = await connector.schema()

    assert outcome.ok
    assert [spec.id for spec in outcome.value] == ["tableId", "forms"]
    assert outcome.value[0].columns[0].data_type == "int"
    assert outcome.value[1].increment_column_id == "id"


@pytest.mark.asyncio
async def test_schema_accepts_descriptor_lists(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, descriptor_response, acquire_token,
        descriptor_paths=["/schema/both.json"],
    )

    outcome = await connector.schema()

    assert outcome.ok
    assert outcome.value[1].depends_on == ["forms"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "paths",
    [
        ["/schema/table_id.json", "/schema/missing.json"],
        ["/schema/broken.json", "/schema/forms.json"],
        ["/schema/cycle.json"],
        ["/schema/unknown.json"],
        [],
    ],
)
async def test_schema_is_all_or_nothing(settings, gateway_requests, acquire_token, paths):
    connector = make_connector(
        settings, gateway_requests, descriptor_response, acquire_token, descriptor_paths=paths,
    )

    outcome = await connector.schema()

    assert not outcome.ok
    assert outcome.error_type == "SchemaFetchFailure"
    assert outcome.value is None


@pytest.mark.asyncio
async def test_schema_unexpected_error_resolves_as_failure(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, descriptor_response, acquire_token,
        descriptor_paths=["/schema/table_id.json"],
    )

    with patch(
        "wdc_gateway.connector.lifecycle.resolve_table_order",
        side_effect=RuntimeError("ordering exploded"),
    ):
        outcome = await connector.schema()

    assert not outcome.ok
    assert outcome.error_type == "RuntimeError"
    assert "ordering exploded" in outcome.error


@pytest.mark.asyncio
async def test_schema_uses_configured_descriptor_paths(gateway_requests, acquire_token):
    settings = Settings(SCHEMA_DESCRIPTOR_PATHS="/schema/forms.json, /schema/table_id.json")
    connector = make_connector(settings, gateway_requests, descriptor_response, acquire_token)

    outcome = await connector.schema()

    assert [spec.id for spec in outcome.value] == ["forms", "tableId"]
    assert {r.url.path for r in gateway_requests} == {"/schema/forms.json", "/schema/table_id.json"}


# ============================================================================
# Data Retrieval Tests
# ============================================================================

@pytest.mark.asyncio
async def test_get_data_fetches_through_proxy(settings, gateway_requests, acquire_token):
    payload = {"entities": [{"columnOneValue": 1, "columnTwoValue": 2}]}
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json=payload), acquire_token, token="abc"
    )

    outcome = await connector.get_data("tableId")

    assert outcome.ok
    assert outcome.value == payload
    request = gateway_requests[0]
    assert request.url.path == "/proxy"
    assert request.url.params["endpoint"] == "your/endpoint"
    assert "page" not in request.url.params
    assert request.headers["Authorization"] == "token abc"


@pytest.mark.asyncio
async def test_get_data_requests_next_page_for_incremental_table(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json={"entities": []}), acquire_token
    )

    await connector.get_data("forms", "4")
    await connector.get_data("forms", "5")

    assert [r.url.params["page"] for r in gateway_requests] == ["5", "6"]


@pytest.mark.asyncio
async def test_get_data_ignores_marker_for_non_incremental_table(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200, json={"entities": []}), acquire_token
    )

    await connector.get_data("tableId", "4")

    assert "page" not in gateway_requests[0].url.params


@pytest.mark.asyncio
async def test_get_data_upstream_failure(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(502), acquire_token)

    outcome = await connector.get_data("tableId")

    assert not outcome.ok
    assert outcome.error_type == "UpstreamRejection"


@pytest.mark.asyncio
async def test_get_data_unknown_table(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(200, json={}), acquire_token)

    outcome = await connector.get_data("nope")

    assert not outcome.ok
    assert outcome.error_type == "UnknownTableError"
    assert gateway_requests == []


@pytest.mark.asyncio
async def test_get_data_non_numeric_marker_fails(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(200, json={}), acquire_token)

    outcome = await connector.get_data("forms", "cursor-abc")

    assert not outcome.ok
    assert gateway_requests == []


@pytest.mark.asyncio
async def test_get_data_requires_dependency_data(settings, gateway_requests, acquire_token):
    def handler(request):
        if request.url.path.startswith("/schema/"):
            return descriptor_response(request)
        return httpx.Response(200, json={"entities": []})

    connector = make_connector(
        settings, gateway_requests, handler, acquire_token, descriptor_paths=["/schema/both.json"],
    )
    assert (await connector.schema()).ok
    gateway_requests.clear()

    missing = await connector.get_data("tableId")
    present = await connector.get_data("tableId", None, [{"entities": []}])

    assert not missing.ok
    assert present.ok
    assert len(gateway_requests) == 1


# ============================================================================
# Post-processing Tests
# ============================================================================

@pytest.mark.asyncio
async def test_post_process_outcome(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(200), acquire_token)
    raw = {"entities": [{"columnOneValue": 1, "columnTwoValue": 2}]}
    snapshot = json.dumps(raw)

    outcome = await connector.post_process("tableId", raw)

    assert outcome.ok
    assert outcome.value == [{"column1": 1, "column2": 2}]
    assert json.dumps(raw) == snapshot


@pytest.mark.asyncio
async def test_post_process_shape_error(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(200), acquire_token)

    outcome = await connector.post_process("tableId", {"rows": []})

    assert not outcome.ok
    assert outcome.error_type == "PostProcessShapeError"


# ============================================================================
# Accessor / Teardown Tests
# ============================================================================

@pytest.mark.asyncio
async def test_connection_data_is_readable(settings, gateway_requests, acquire_token):
    connector = make_connector(
        settings, gateway_requests, lambda r: httpx.Response(200), acquire_token,
        connection_data={"FilterValue": "active"},
    )

    assert connector.get_connection_data("FilterValue") == "active"
    assert connector.get_connection_data("PizzaToppings") is None


@pytest.mark.asyncio
async def test_teardown_resolves(settings, gateway_requests, acquire_token):
    connector = make_connector(settings, gateway_requests, lambda r: httpx.Response(200), acquire_token)

    outcome = await connector.teardown()

    assert outcome.ok
