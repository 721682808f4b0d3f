"""
Unit tests for SupabaseClient and TenantRepository.

Supabase is replaced by an httpx.MockTransport so the real client code
(URLs, headers, error mapping) is exercised without network access.
"""

import httpx
import pytest

from conftest import ORGANIZATION_ID
from ultron_assistant.config import SupabaseConfig
from ultron_assistant.domain.errors import (
    AuthenticationError,
    SupabaseConnectionError,
    SupabaseRequestError,
)
from ultron_assistant.infrastructure.supabase_client import SupabaseClient
from ultron_assistant.repositories.tenant_repository import TenantRepository

SERVICE_KEY = "service-role-key"

# access token -> Supabase Auth user id
AUTH_USERS = {
    "good-token": "auth-1",
    "orphan-token": "auth-2",
    "ghost-token": "auth-3",
}

USERS = {
    "auth-1": {"id": "user-1", "email": "conseiller@example.com", "organization_id": ORGANIZATION_ID},
    "auth-2": {"id": "user-2", "email": "orphelin@example.com", "organization_id": None},
}


def supabase_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path

    if path == "/auth/v1/health":
        return httpx.Response(200, json={"name": "GoTrue"})

    if path == "/auth/v1/user":
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in AUTH_USERS:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json={"id": AUTH_USERS[token], "aud": "authenticated"})

    if request.headers.get("Authorization") != f"Bearer {SERVICE_KEY}":
        return httpx.Response(401, json={"message": "missing service key"})

    if path == "/rest/v1/users":
        auth_id = request.url.params["auth_id"].removeprefix("eq.")
        return httpx.Response(200, json=[USERS[auth_id]] if auth_id in USERS else [])

    if path == "/rest/v1/organizations":
        if request.url.params["id"] == f"eq.{ORGANIZATION_ID}":
            return httpx.Response(200, json=[{"id": ORGANIZATION_ID, "name": "Cabinet Test"}])
        return httpx.Response(200, json=[])

    if path == "/rest/v1/crm_prospects":
        if "bad_column" in request.url.params:
            return httpx.Response(400, json={"message": "column crm_prospects.bad_column does not exist"})
        return httpx.Response(200, json=[{"first_name": "Jean", "params": dict(request.url.params)}])

    return httpx.Response(404)


@pytest.fixture
def supabase_config():
    return SupabaseConfig(supabase_url="https://test-project.supabase.co/", supabase_key=SERVICE_KEY)


@pytest.fixture
async def supabase_client(supabase_config):
    client = SupabaseClient(supabase_config, transport=httpx.MockTransport(supabase_handler))
    await client.connect()
    yield client
    await client.close()


class TestSupabaseClient:
    """Test cases for the thin Supabase client."""

    @pytest.mark.asyncio
    async def test_connect_and_health(self, supabase_client):
        assert supabase_client.is_connected()
        assert supabase_client.base_url == "https://test-project.supabase.co"

        health = await supabase_client.health_check()
        assert health["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_connect_failure(self, supabase_config):
        def down(request):
            return httpx.Response(503)

        client = SupabaseClient(supabase_config, transport=httpx.MockTransport(down))

        with pytest.raises(SupabaseConnectionError):
            await client.connect()
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_select_rows_params(self, supabase_client):
        rows = await supabase_client.select_rows(
            "crm_prospects",
            filters={"organization_id": f"eq.{ORGANIZATION_ID}", "qualification": "eq.chaud"},
            order="created_at.desc",
            limit=10,
        )

        assert rows[0]["params"] == {
            "select": "*",
            "organization_id": f"eq.{ORGANIZATION_ID}",
            "qualification": "eq.chaud",
            "order": "created_at.desc",
            "limit": "10",
        }

    @pytest.mark.asyncio
    async def test_select_rows_rejected(self, supabase_client):
        with pytest.raises(SupabaseRequestError) as exc_info:
            await supabase_client.select_rows("crm_prospects", filters={"bad_column": "eq.1"})

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_not_connected(self, supabase_config):
        client = SupabaseClient(supabase_config)

        with pytest.raises(SupabaseConnectionError):
            await client.select_rows("crm_prospects")
        assert (await client.health_check())["status"] == "unhealthy"


class TestTenantRepository:
    """Test cases for session-to-tenant resolution."""

    @pytest.mark.asyncio
    async def test_resolve(self, supabase_client):
        tenant = await TenantRepository(supabase_client, timeout_seconds=5).resolve("good-token")

        assert tenant.organization_id == ORGANIZATION_ID
        assert tenant.organization.name == "Cabinet Test"
        assert tenant.user.id == "user-1"
        assert tenant.user.email == "conseiller@example.com"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "expired-token", "orphan-token", "ghost-token"])
    async def test_unresolvable_session(self, supabase_client, token):
        with pytest.raises(AuthenticationError) as exc_info:
            await TenantRepository(supabase_client).resolve(token)

        assert exc_info.value.http_status == 401
        assert exc_info.value.user_message == "Veuillez vous reconnecter pour utiliser l'assistant."

    @pytest.mark.asyncio
    async def test_supabase_unreachable(self, supabase_config):
        client = SupabaseClient(supabase_config)

        with pytest.raises(AuthenticationError):
            await TenantRepository(client).resolve("good-token")
