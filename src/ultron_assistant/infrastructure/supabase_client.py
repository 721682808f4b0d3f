"""
Supabase client for Auth and PostgREST requests.

This module provides a minimal async client over the two Supabase APIs the
assistant needs:

- Auth (/auth/v1): resolve an access token to the authenticated user.
- PostgREST (/rest/v1): read rows with simple filters. Used to look up the
  caller's organization and by the structured fallback execution path.
"""

from typing import Any, Dict, List, Optional
import httpx

from ..config import SupabaseConfig
from ..config_constants import SUPABASE_AUTH_PATH, SUPABASE_REST_PATH
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.errors import SupabaseConnectionError, SupabaseRequestError


logger = get_module_logger()


class SupabaseClient:
    """
    Minimal async Supabase client.

    This is a thin infrastructure layer. Tenant resolution and query
    building live in the repository layer.

    Usage:
        client = SupabaseClient(config)
        await client.connect()

        user = await client.get_auth_user(access_token)

        rows = await client.select_rows(
            "crm_prospects",
            filters={"organization_id": "eq.42", "qualification": "eq.chaud"},
            order="created_at.desc",
            limit=10,
        )

        await client.close()
    """

    def __init__(self, config: SupabaseConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize Supabase client with configuration.

        Args:
            config: Supabase configuration
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._is_connected = False

        self.base_url = config.supabase_url.rstrip("/")

        logger.info("SupabaseClient initialized", supabase_url=self.base_url)

    async def connect(self) -> None:
        """
        Initialize the HTTP client and check that the Auth API answers.

        Raises:
            SupabaseConnectionError: If the client cannot reach Supabase
        """
        if self._is_connected:
            logger.warning("Supabase client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Initializing Supabase client", trace_id=trace_id)

        try:
            # httpx.AsyncClient is safe for concurrent requests
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"apikey": self.config.supabase_key},
                timeout=httpx.Timeout(
                    connect=self.config.connect_timeout_seconds,
                    read=self.config.read_timeout_seconds,
                    write=self.config.write_timeout_seconds,
                    pool=self.config.pool_timeout_seconds
                ),
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive_connections
                ),
                transport=self._transport,
            )

            response = await self._client.get(f"{SUPABASE_AUTH_PATH}/health")
            if response.status_code != 200:
                raise SupabaseConnectionError(
                    f"Supabase Auth health check returned {response.status_code}"
                )

            self._is_connected = True
            logger.info("Supabase client initialized successfully", trace_id=trace_id)

        except Exception as e:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
            error_msg = f"Failed to initialize Supabase client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise SupabaseConnectionError(error_msg) from e

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        trace_id = current_trace_id()
        logger.info("Closing Supabase client", trace_id=trace_id)

        if self._client:
            await self._client.aclose()

        self._is_connected = False
        self._client = None

    def is_connected(self) -> bool:
        """Check if Supabase client is connected."""
        return self._is_connected and self._client is not None

    def _require_client(self) -> httpx.AsyncClient:
        if not self.is_connected() or self._client is None:
            raise SupabaseConnectionError("Supabase client is not connected")
        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on the Supabase Auth API.

        Returns:
            Dictionary with status and connection details
        """
        trace_id = current_trace_id()

        if not self.is_connected():
            return {
                "status": "unhealthy",
                "connected": False,
                "error": "Supabase client not connected"
            }

        try:
            response = await self._require_client().get(f"{SUPABASE_AUTH_PATH}/health")
            if response.status_code != 200:
                return {
                    "status": "unhealthy",
                    "connected": True,
                    "error": f"Unexpected status code: {response.status_code}"
                }

            logger.info("Supabase health check passed", trace_id=trace_id)
            return {"status": "healthy", "connected": True, "supabase_url": self.base_url}

        except Exception as e:
            logger.error(
                "Supabase health check failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id
            )
            return {
                "status": "unhealthy",
                "connected": True,
                "error": str(e)
            }

    async def get_auth_user(self, access_token: str) -> Dict[str, Any]:
        """
        Resolve an access token to the Supabase Auth user.

        Args:
            access_token: JWT issued by Supabase Auth to the browser session

        Returns:
            Auth user object ({"id": ..., "email": ..., ...})

        Raises:
            SupabaseConnectionError: If Supabase cannot be reached
            SupabaseRequestError: If the token is rejected (status_code 401/403)
        """
        client = self._require_client()
        trace_id = current_trace_id()

        try:
            response = await client.get(
                f"{SUPABASE_AUTH_PATH}/user",
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.warning(
                "Supabase rejected access token",
                status_code=e.response.status_code,
                trace_id=trace_id
            )
            raise SupabaseRequestError(
                "Access token rejected by Supabase Auth",
                status_code=e.response.status_code
            ) from e

        except httpx.HTTPError as e:
            error_msg = f"Supabase Auth request failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise SupabaseConnectionError(error_msg) from e

    async def select_rows(
        self,
        table: str,
        filters: Optional[Dict[str, str]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """
        Read rows through PostgREST using the service role key.

        Args:
            table: Table name
            filters: PostgREST filters, e.g. {"qualification": "eq.chaud", "assigned_to": "is.null"}
            columns: Value of the select parameter
            order: PostgREST order, e.g. "created_at.desc"
            limit: Maximum number of rows
            timeout: Optional read timeout override in seconds

        Returns:
            List of row dictionaries

        Raises:
            SupabaseConnectionError: If Supabase cannot be reached
            SupabaseRequestError: If PostgREST rejects the request
        """
        client = self._require_client()
        trace_id = current_trace_id()

        params: Dict[str, Any] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit

        logger.info(
            "Selecting rows through PostgREST",
            table=table,
            filter_columns=sorted((filters or {}).keys()),
            order=order,
            limit=limit,
            trace_id=trace_id
        )

        try:
            response = await client.get(
                f"{SUPABASE_REST_PATH}/{table}",
                params=params,
                headers={"Authorization": f"Bearer {self.config.supabase_key}"},
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
            response.raise_for_status()
            rows = response.json()

            logger.info("PostgREST select succeeded", table=table, row_count=len(rows), trace_id=trace_id)
            return rows

        except httpx.HTTPStatusError as e:
            error_msg = f"PostgREST select on {table} failed: {e.response.text}"
            logger.error(error_msg, status_code=e.response.status_code, trace_id=trace_id)
            raise SupabaseRequestError(error_msg, status_code=e.response.status_code) from e

        except httpx.HTTPError as e:
            error_msg = f"PostgREST request failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise SupabaseConnectionError(error_msg) from e
