from __future__ import annotations

from pydantic import Field

try:
    from pydantic_settings import BaseSettings, SettingsConfigDict
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "pydantic-settings is required. Install with: pip install pydantic-settings"
    ) from e


class ProvGraphSettings(BaseSettings):
    """Unified configuration for provgraph.

    Environment variables are prefixed with PROVGRAPH_.
    """

    model_config = SettingsConfigDict(env_prefix="PROVGRAPH_", extra="ignore")

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")

    # --- Lineage store ---
    sql_driver: str = Field(default="sqlite3", description="DB-API 2.0 module name")
    sql_url: str = Field(default="/tmp/provgraph.sqlite")
    direction_ancestors: str = Field(default="ancestors")
    direction_descendants: str = Field(default="descendants")
    strict_writes: bool = Field(
        default=False, description="Report failed inserts as put_* failures instead of dropping them"
    )

    # --- Causality export ---
    sink: str = Field(default="redis", description="redis|memory")
    bus_url: str = Field(default="redis://localhost:6379/0")
    bus_topic: str = Field(default="provgraph:cdm")
    producer_id: str = Field(default="provgraph")
    schema_descriptor: str = Field(default="TCCDMDatum")
    serializer: str = Field(default="json")
    process_cache_size: int = Field(default=65536, description="Max pids tracked by the translator")


settings = ProvGraphSettings()
