"""
Connector Lifecycle
===================

Client-side phase controller the host application drives through setup,
schema declaration, data retrieval, post-processing and teardown.

Every public coroutine returns exactly one Outcome and never raises, so the
host is never left waiting on an unresolved call.

Phases:
    - interactive: nothing to prepare
    - auth: validate the stored token, acquiring a new one when it is
      missing, rejected, or about to expire
    - anything else (including gatherData): nothing to do

All upstream traffic goes through the gateway's /proxy route with the stored
token sent as "Authorization: token <credential>".
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from ..config import Settings, get_settings
from ..errors import (
    ConnectorError,
    SchemaFetchFailure,
    TokenInvalid,
    TransportFailure,
    UnknownTableError,
    UpstreamRejection,
)
from ..models import ConnectorPhase, Outcome, PageRequest, TableSpec
from ..proxy.paths import build_proxy_path
from .credentials import CredentialStore, OAuthTokenAcquirer, TokenAcquirer, token_expires_soon
from .tables import Table, resolve_table_order

logger = logging.getLogger(__name__)

AUTH_SCHEME = "token"


class ConnectorLifecycle:
    """
    Phase-driven web data connector.

    Attributes:
        name: Connector display name
        credentials: Store holding the host's access token
        tables: Table definitions keyed by table id
    """

    def __init__(
        self,
        tables: Sequence[Table],
        credentials: CredentialStore,
        connection_data: Optional[Mapping[str, Any]] = None,
        settings: Optional[Settings] = None,
        acquire_token: Optional[TokenAcquirer] = None,
        token_check: Optional[Callable[[Any], bool]] = None,
        descriptor_paths: Optional[Sequence[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        name: str = "Formstack",
    ):
        """
        Args:
            tables: One Table per table id declared by the schema descriptors
            credentials: Host credential store, read and overwritten by auth
            connection_data: Host connection options (read only)
            settings: Settings, defaults to get_settings()
            acquire_token: Token acquisition routine, defaults to OAuthTokenAcquirer
            token_check: Predicate over the token check payload
            descriptor_paths: Schema descriptor paths, defaults to settings
            transport: Optional httpx transport replacing the network
            name: Connector display name
        """
        self.name = name
        self.settings = settings or get_settings()
        self.credentials = credentials
        self.tables: Dict[str, Table] = {table.table_id: table for table in tables}
        self._connection_data = dict(connection_data or {})
        self._acquire_token = acquire_token or OAuthTokenAcquirer(
            self.settings, self._connection_data
        )
        self._token_check = token_check or self._default_token_check
        self._descriptor_paths = list(
            descriptor_paths if descriptor_paths is not None
            else self.settings.schema_descriptor_paths_list
        )
        self._schema: Dict[str, TableSpec] = {}
        self._client = httpx.AsyncClient(
            base_url=self.settings.GATEWAY_URL,
            transport=transport,
            timeout=httpx.Timeout(self.settings.UPSTREAM_TIMEOUT_SECONDS),
        )

    # ========================================================================
    # Host accessors
    # ========================================================================

    def get_connection_data(self, option_name: str) -> Any:
        return self._connection_data.get(option_name)

    def get_password(self) -> Optional[str]:
        return self.credentials.get()

    def table(self, table_id: str) -> Table:
        """
        Look up a table definition.

        Raises:
            UnknownTableError: If no table is registered under table_id
        """
        try:
            return self.tables[table_id]
        except KeyError:
            raise UnknownTableError(f"No table definition registered for '{table_id}'")

    def is_incremental(self, table_id: str) -> bool:
        spec = self._schema.get(table_id)
        return self.table(table_id).incremental or bool(spec and spec.increment_column_id)

    # ========================================================================
    # Setup / Teardown
    # ========================================================================

    async def setup(self, phase: Union[ConnectorPhase, str]) -> Outcome:
        """
        Run set up tasks for one initialization phase.

        Args:
            phase: interactive, gatherData or auth; unknown values are
                   accepted and do nothing

        Returns:
            Outcome resolved once the phase's tasks are complete
        """
        try:
            phase = ConnectorPhase(phase)
        except ValueError:
            logger.info(f"No set up tasks for phase {phase!r}")
            return Outcome.success()

        try:
            if phase is ConnectorPhase.AUTH:
                await self._ensure_token()
            return Outcome.success()
        except Exception as e:
            logger.error(f"Set up failed for phase {phase.value}: {e}", exc_info=True)
            return Outcome.failure(e)

    async def teardown(self) -> Outcome:
        try:
            await self._client.aclose()
            return Outcome.success()
        except Exception as e:
            logger.error(f"Teardown failed: {e}", exc_info=True)
            return Outcome.failure(e)

    # ========================================================================
    # Token handling
    # ========================================================================

    def _default_token_check(self, payload: Any) -> bool:
        return isinstance(payload, dict) and bool(payload.get(self.settings.TOKEN_CHECK_FIELD))

    async def _ensure_token(self) -> None:
        """
        Make sure a usable token is stored, best effort.

        A token that is missing, about to expire, or rejected by the token
        check triggers exactly one acquisition attempt. Whether that attempt
        succeeds is not checked here; a bad token surfaces on the next data
        call instead.
        """
        token = self.credentials.get()

        if not token:
            logger.info("No stored access token, acquiring a new one")
        else:
            try:
                await self._validate_token(token)
                logger.info("Stored access token is valid")
                return
            except TokenInvalid as e:
                logger.warning(f"Stored access token rejected: {e}")
            except ConnectorError as e:
                logger.warning(f"Token check failed: {e}")

        await self._acquire()

    async def _validate_token(self, token: str) -> None:
        """
        Raises:
            TokenInvalid: If the token is expiring or rejected
            TransportFailure: If the token check could not be made
        """
        if token_expires_soon(token, self.settings.TOKEN_EXPIRY_LEEWAY_SECONDS):
            raise TokenInvalid("Access token is expired or about to expire")

        try:
            payload = await self._get_json(
                build_proxy_path(self.settings.TOKEN_CHECK_PATH), token=token
            )
        except UpstreamRejection as e:
            raise TokenInvalid(f"Token check responded with HTTP {e.status_code}") from e

        if not self._token_check(payload):
            raise TokenInvalid("Token check payload did not accept the token")

    async def _acquire(self) -> None:
        try:
            await self._acquire_token(self.credentials)
        except Exception as e:
            logger.error(f"Token acquisition failed: {e}", exc_info=True)

    # ========================================================================
    # HTTP
    # ========================================================================

    async def _get_json(self, path: str, token: Optional[str] = None) -> Any:
        """
        GET a gateway path and decode its JSON body.

        Raises:
            TransportFailure: Gateway unreachable
            UpstreamRejection: Non-200 response
            ConnectorError: Body is not JSON
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"{AUTH_SCHEME} {token}"

        try:
            response = await self._client.get(path, headers=headers)
        except httpx.RequestError as e:
            raise TransportFailure(f"Request to {path} failed: {e}", url=path) from e

        if response.status_code != 200:
            raise UpstreamRejection(response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ConnectorError(f"Response from {path} is not valid JSON") from e

    # ========================================================================
    # Schema
    # ========================================================================

    async def _fetch_descriptor(self, path: str) -> List[TableSpec]:
        payload = await self._get_json(path)
        descriptors = payload if isinstance(payload, list) else [payload]
        return [TableSpec.model_validate(descriptor) for descriptor in descriptors]

    async def schema(self) -> Outcome:
        """
        Declare the tables this connector provides.

        Descriptor fetches run concurrently and are all-or-nothing: if any
        fails, no schema is declared.

        Returns:
            Outcome carrying the ordered list of TableSpec
        """
        try:
            if not self._descriptor_paths:
                raise SchemaFetchFailure("No schema descriptor paths configured")

            results = await asyncio.gather(
                *(self._fetch_descriptor(path) for path in self._descriptor_paths),
                return_exceptions=True,
            )

            specs: List[TableSpec] = []
            for path, result in zip(self._descriptor_paths, results):
                if isinstance(result, BaseException):
                    raise SchemaFetchFailure(f"Descriptor {path} could not be loaded: {result}")
                specs.extend(result)

            try:
                resolve_table_order(specs)
            except ValueError as e:
                raise SchemaFetchFailure(str(e)) from e

            for spec in specs:
                if spec.id not in self.tables:
                    raise SchemaFetchFailure(f"No table definition registered for '{spec.id}'")

            self._schema = {spec.id: spec for spec in specs}
            logger.info(
                "Declared schema",
                extra={"tables": [spec.id for spec in specs]}
            )
            return Outcome.success(specs)

        except SchemaFetchFailure as e:
            logger.error(f"Schema declaration failed: {e}")
            return Outcome.failure(e)
        except Exception as e:
            logger.error(f"Unexpected error declaring schema: {e}", exc_info=True)
            return Outcome.failure(e)

    # ========================================================================
    # Data retrieval
    # ========================================================================

    def page_request(
        self,
        table_id: str,
        last_record_marker: Optional[str] = None,
        dependency_data: Optional[List[Any]] = None,
    ) -> PageRequest:
        """
        Build the request for one page of a table.

        The marker is only used for incremental tables.
        """
        table = self.table(table_id)
        marker = last_record_marker if self.is_incremental(table_id) else None
        path = build_proxy_path(table.endpoint(dependency_data), {"last": marker})
        return PageRequest(path=path, marker=marker)

    def _check_dependencies(self, table_id: str, dependency_data: Optional[List[Any]]) -> None:
        spec = self._schema.get(table_id)
        if not spec or not spec.depends_on:
            return

        if dependency_data is None or len(dependency_data) != len(spec.depends_on):
            raise ConnectorError(
                f"Table '{table_id}' needs data for {spec.depends_on} before it can be fetched"
            )

    async def get_data(
        self,
        table_id: str,
        last_record_marker: Optional[str] = None,
        dependency_data: Optional[List[Any]] = None,
    ) -> Outcome:
        """
        Retrieve one page of raw data for a table.

        Args:
            table_id: Declared table id
            last_record_marker: Marker from the previous page or incremental
                                run, None for a full refresh
            dependency_data: Resolved data of each table in dependsOn order,
                             None when the table has no dependencies

        Returns:
            Outcome carrying the raw decoded payload
        """
        try:
            self._check_dependencies(table_id, dependency_data)
            page = self.page_request(table_id, last_record_marker, dependency_data)
            logger.info(
                f"Fetching data for table {table_id}",
                extra={"path": page.path, "marker": page.marker}
            )
            return Outcome.success(await self._get_json(page.path, token=self.credentials.get()))

        except (ConnectorError, ValueError) as e:
            logger.error(f"Data retrieval failed for table {table_id}: {e}")
            return Outcome.failure(e)
        except Exception as e:
            logger.error(f"Unexpected error fetching table {table_id}: {e}", exc_info=True)
            return Outcome.failure(e)

    async def post_process(self, table_id: str, raw_data: Any) -> Outcome:
        """
        Shape raw table data into rows.

        Returns:
            Outcome carrying a list of {column key: value} rows
        """
        try:
            return Outcome.success(self.table(table_id).post_process(raw_data))
        except ConnectorError as e:
            logger.error(f"Post-processing failed for table {table_id}: {e}")
            return Outcome.failure(e)
        except Exception as e:
            logger.error(f"Unexpected error post-processing table {table_id}: {e}", exc_info=True)
            return Outcome.failure(e)
