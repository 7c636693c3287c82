"""Configuration models for fanhttp.

All models use Pydantic v2.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Engine Configuration
# =============================================================================


class EngineConfig(BaseModel):
    """Shared configuration for every request in a batch.

    Only max_body_size and max_concurrency affect the engine itself. base_url,
    headers and timeout are handed to the default httpx transport and are
    ignored when the caller supplies its own transport.
    """

    model_config = ConfigDict(extra="forbid")

    max_body_size: int = Field(
        default=0, ge=0, description="Maximum bytes readable from a response body (0 = unlimited)"
    )
    max_concurrency: int | None = Field(
        default=None, ge=1, description="Maximum in-flight requests (None = one worker per request)"
    )
    base_url: str | None = Field(
        default=None, description="Base URL that relative request paths are resolved against"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request (request headers win)"
    )
    timeout: float | None = Field(
        default=30.0, description="Timeout in seconds for the default transport (None = no timeout)"
    )

    @field_validator("timeout")
    @classmethod
    def check_timeout_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("timeout must be positive or null")
        return v
