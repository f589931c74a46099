"""
Data Models Module

This module defines Pydantic models for request/response validation
and data serialization throughout the gateway and the connector.

Models are organized by functional area:
- Proxy models (inbound proxy requests, upstream responses)
- Connector models (phases, table descriptors, table state, page requests)
- Completion results (single-resolution outcomes of lifecycle calls)
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Proxy Models
# ============================================================================

class ProxyRequest(BaseModel):
    """Inbound proxy call, built per request and never persisted."""
    endpoint: str = Field(..., description="Logical endpoint path relative to the upstream base URL")
    authorization: Optional[str] = Field(None, description="Caller credential forwarded as Authorization")
    page: Optional[int] = Field(None, description="Optional page number forwarded upstream")


class UpstreamResponse(BaseModel):
    """Upstream result relayed verbatim on success."""
    status_code: int = Field(..., description="Upstream HTTP status code")
    headers: List[Tuple[str, str]] = Field(default_factory=list, description="Ordered upstream response headers")
    body: bytes = Field(b"", description="Raw upstream response body")


# ============================================================================
# Connector Models
# ============================================================================

class ConnectorPhase(str, Enum):
    """Phases the host drives the connector through."""
    INTERACTIVE = "interactive"
    GATHER_DATA = "gatherData"
    AUTH = "auth"


class ColumnSpec(BaseModel):
    """Column declaration from a table descriptor."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Column identifier")
    data_type: str = Field("string", alias="dataType", description="Column data type")
    alias: Optional[str] = Field(None, description="Friendly column name")
    description: Optional[str] = Field(None, description="Column description")


class TableSpec(BaseModel):
    """Table declaration from a schema descriptor."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Table identifier")
    alias: Optional[str] = Field(None, description="Friendly table name")
    columns: List[ColumnSpec] = Field(default_factory=list, description="Declared columns")
    increment_column_id: Optional[str] = Field(
        None, alias="incrementColumnId", description="Column supporting incremental refresh"
    )
    depends_on: List[str] = Field(
        default_factory=list, alias="dependsOn", description="Ordered ids of prerequisite tables"
    )


class Credential(BaseModel):
    """Stored access token, owned by the host application."""
    token: Optional[str] = None


class TableState(BaseModel):
    """Per-table incremental refresh state owned by the host."""
    last_record_marker: Optional[str] = None


class PageRequest(BaseModel):
    """One page of table data to fetch through the proxy."""
    path: str
    marker: Optional[str] = None


# ============================================================================
# Completion Results
# ============================================================================

class Outcome(BaseModel):
    """
    Single-resolution result of a lifecycle call.

    Either success carrying a value, or failure carrying the reason and the
    error type from the connector error taxonomy.
    """
    ok: bool = Field(..., description="Whether the call succeeded")
    value: Any = Field(None, description="Result value on success")
    error: Optional[str] = Field(None, description="Failure reason")
    error_type: Optional[str] = Field(None, description="Failure class name")

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: BaseException) -> "Outcome":
        return cls(ok=False, error=str(exc), error_type=type(exc).__name__)


class SessionResult(BaseModel):
    """Everything one connector session produced."""
    rows: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    failures: Dict[str, str] = Field(default_factory=dict)
    states: Dict[str, TableState] = Field(default_factory=dict)
    order: List[str] = Field(default_factory=list, description="Order tables were fetched in")
