"""Option models injected into the client at setup time.

These are plain pydantic models: constructing one with an out-of-range value
raises ``pydantic.ValidationError`` synchronously, before any query runs.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_IN_ELEMENTS = 1000
DEFAULT_MAX_TOTAL_PARAMS = 5000
DEFAULT_RETRY_ATTEMPTS = 1
DEFAULT_BACKOFF_MS = 100
DEFAULT_PORT = 5432
DEFAULT_SCHEMA = "public"


class SafetyOptions(BaseModel):
    """Resource ceilings enforced by the compiler and the execution engine."""

    model_config = ConfigDict(frozen=True)

    max_in_elements: int = Field(
        default=DEFAULT_MAX_IN_ELEMENTS,
        ge=1,
        description="Maximum number of elements in one IN / NOT IN list",
    )
    max_total_params: int = Field(
        default=DEFAULT_MAX_TOTAL_PARAMS,
        ge=1,
        description="Maximum rows x columns bound by one insert/upsert",
    )
    statement_timeout_ms: Optional[int] = Field(
        default=None,
        ge=0,
        description="Per-statement timeout applied to the borrowed connection",
    )


class RetryOptions(BaseModel):
    """Retry policy for transient failures (SQLSTATE 08xxx/40xxx, resets)."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(
        default=DEFAULT_RETRY_ATTEMPTS,
        ge=1,
        description="Maximum number of attempts, including the first",
    )
    backoff_ms: int = Field(
        default=DEFAULT_BACKOFF_MS,
        ge=0,
        description="Delay before the first retry; doubles on each retry",
    )


class PoolOptions(BaseModel):
    """Sizing and timeouts for the psycopg connection pool."""

    model_config = ConfigDict(frozen=True)

    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=10, ge=1)
    timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait for a free connection"
    )
    max_idle: float = Field(
        default=600.0, gt=0, description="Seconds before an idle connection is closed"
    )


class ConnectionConfig(BaseModel):
    """Connection parameters in object form (alternative to a DSN string)."""

    host: str = Field(min_length=1)
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    user: str = "postgres"
    password: str = Field(default="", repr=False)
    database: str = "postgres"
    ssl: Union[bool, str, None] = None

