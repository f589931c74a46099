"""
Session runner that drives a connector through one full session the way a
host application does.

Tables are fetched stage by stage in dependency order, one table at a time,
so a table's get_data only runs once every table in its dependsOn list has
resolved data. A failed table ends up with no rows; tables that depend on it
are skipped.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import ConnectorError, SchemaFetchFailure
from ..models import ConnectorPhase, SessionResult, TableSpec, TableState
from .lifecycle import ConnectorLifecycle
from .tables import resolve_table_order

logger = logging.getLogger(__name__)


async def _collect_pages(
    connector: ConnectorLifecycle,
    spec: TableSpec,
    state: TableState,
    dependency_data: Optional[List[Any]],
    max_pages: int,
) -> Tuple[Any, TableState]:
    """
    Fetch every page of one table.

    Non-incremental tables are a single page. Incremental tables advance
    the numeric marker by one per page until a page has no entities or
    max_pages is reached.

    Returns:
        (merged raw data, updated TableState)

    Raises:
        ConnectorError: If any page fails
    """
    table = connector.table(spec.id)
    incremental = connector.is_incremental(spec.id)
    marker = state.last_record_marker
    last_fetched = marker
    pages = []

    for _ in range(max_pages):
        outcome = await connector.get_data(spec.id, marker, dependency_data)
        if not outcome.ok:
            raise ConnectorError(outcome.error)

        pages.append(outcome.value)
        if not incremental:
            break

        if not table.entities_of(outcome.value):
            break

        page_number = int(marker) + 1 if marker is not None else 1
        last_fetched = str(page_number)
        marker = last_fetched

    return table.merge_pages(pages), TableState(last_record_marker=last_fetched)


async def run_session(
    connector: ConnectorLifecycle,
    states: Optional[Mapping[str, TableState]] = None,
    max_pages: Optional[int] = None,
) -> SessionResult:
    """
    Run setup, schema, data retrieval and teardown for every declared table.

    Args:
        connector: Connector to drive
        states: Incremental refresh state per table id
        max_pages: Page cap per table, defaults to settings.MAX_PAGES

    Returns:
        SessionResult with rows, failures and updated states per table

    Raises:
        SchemaFetchFailure: If the schema could not be declared; no table
                            is fetched in that case
        ValueError: If max_pages is less than 1
    """
    states = dict(states or {})
    if max_pages is None:
        max_pages = connector.settings.MAX_PAGES
    result = SessionResult()
    raw: Dict[str, Any] = {}

    try:
        if max_pages < 1:
            raise ValueError(f"max_pages must be at least 1, got {max_pages}")

        for phase in (ConnectorPhase.AUTH, ConnectorPhase.GATHER_DATA):
            await connector.setup(phase)

        schema = await connector.schema()
        if not schema.ok:
            raise SchemaFetchFailure(schema.error)

        for stage in resolve_table_order(schema.value):
            for spec in stage:
                failed = [dep for dep in spec.depends_on if dep not in raw]
                if failed:
                    result.failures[spec.id] = f"Skipped: dependencies {failed} have no data"
                    logger.warning(f"Skipping table {spec.id}", extra={"missing": failed})
                    continue

                dependency_data = [raw[dep] for dep in spec.depends_on] or None
                state = states.get(spec.id, TableState())

                try:
                    data, new_state = await _collect_pages(
                        connector, spec, state, dependency_data, max_pages
                    )
                except ConnectorError as e:
                    result.failures[spec.id] = str(e)
                    logger.error(f"Table {spec.id} has no data for this run: {e}")
                    continue

                raw[spec.id] = data
                result.order.append(spec.id)
                result.states[spec.id] = new_state

                processed = await connector.post_process(spec.id, data)
                if processed.ok:
                    result.rows[spec.id] = processed.value
                else:
                    result.failures[spec.id] = processed.error

        logger.info(
            "Session complete",
            extra={"tables": result.order, "failed": sorted(result.failures)}
        )
        return result

    finally:
        await connector.teardown()
