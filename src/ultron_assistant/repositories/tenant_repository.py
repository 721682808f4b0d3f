"""
Tenant Repository.

Resolves a Supabase session (access token) to the advisor and the
organization whose rows they may query:

1. GET /auth/v1/user with the access token -> auth user id
2. users row with auth_id = <auth user id> (must carry organization_id)
3. organizations row with id = <organization_id>

Any failure along the way (missing token, rejected token, unknown user,
user without organization, Supabase unreachable) is an AuthenticationError:
the caller cannot be scoped to a tenant, so nothing may be queried.
"""

import asyncio
from typing import Any, Dict, Optional

from ultron_assistant.domain.errors import AuthenticationError, SupabaseError
from ultron_assistant.domain.tenant import TenantContext, TenantOrganization, TenantUser
from ultron_assistant.infrastructure.supabase_client import SupabaseClient
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.tracing import current_trace_id

logger = get_module_logger()


class TenantRepository:
    """Repository for session-to-tenant resolution."""

    def __init__(self, supabase_client: SupabaseClient, timeout_seconds: Optional[float] = None):
        self.supabase_client = supabase_client
        self.timeout_seconds = timeout_seconds

    async def resolve(self, access_token: Optional[str]) -> TenantContext:
        """
        Resolve an access token to a TenantContext.

        Raises:
            AuthenticationError: If the session cannot be resolved to a user and organization
        """
        trace_id = current_trace_id()

        if not access_token:
            logger.info("No session token on request", trace_id=trace_id)
            raise AuthenticationError("Missing access token")

        try:
            return await asyncio.wait_for(self._resolve(access_token), timeout=self.timeout_seconds)

        except SupabaseError as e:
            logger.warning("Tenant resolution failed", error=e.message, trace_id=trace_id)
            raise AuthenticationError(f"Tenant resolution failed: {e.message}") from e

        except asyncio.TimeoutError as e:
            logger.warning("Tenant resolution timed out", timeout=self.timeout_seconds, trace_id=trace_id)
            raise AuthenticationError("Tenant resolution timed out") from e

    async def _resolve(self, access_token: str) -> TenantContext:
        auth_user = await self.supabase_client.get_auth_user(access_token)
        auth_id = auth_user.get("id")
        if not auth_id:
            raise AuthenticationError("Supabase Auth returned no user id")

        user_row = await self._single_row(
            "users",
            filters={"auth_id": f"eq.{auth_id}"},
            columns="id,email,organization_id",
        )
        if user_row is None or not user_row.get("organization_id"):
            logger.warning("Authenticated user has no organization", auth_id=auth_id, trace_id=current_trace_id())
            raise AuthenticationError("User has no organization")

        organization_row = await self._single_row(
            "organizations",
            filters={"id": f"eq.{user_row['organization_id']}"},
            columns="id,name",
        )
        if organization_row is None:
            raise AuthenticationError("Organization not found")

        tenant = TenantContext(
            user=TenantUser(id=str(user_row["id"]), email=user_row.get("email")),
            organization=TenantOrganization(id=str(organization_row["id"]), name=organization_row.get("name")),
        )

        logger.info(
            "Tenant resolved",
            user_id=tenant.user.id,
            organization_id=tenant.organization_id,
            trace_id=current_trace_id(),
        )
        return tenant

    async def _single_row(self, table: str, filters: Dict[str, str], columns: str) -> Optional[Dict[str, Any]]:
        rows = await self.supabase_client.select_rows(table=table, filters=filters, columns=columns, limit=1)
        return rows[0] if rows else None
