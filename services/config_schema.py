from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Reusable list coercion: "skype, msteams" -> ["skype", "msteams"]
# ---------------------------------------------------------------------------

def _coerce_list(v: object) -> object:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


CoercedList = Annotated[list[str], BeforeValidator(_coerce_list)]


# ---------------------------------------------------------------------------
# Base for all config blocks: unknown keys are a validation error
# ---------------------------------------------------------------------------

class _StrictConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")


class VisionConfig(_StrictConfig):
    api_url:  str
    api_key:  str
    language: str = "en"

    @field_validator("api_url")
    @classmethod
    def _require_scheme(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_url must start with http:// or https://")
        return v


# ---------------------------------------------------------------------------
# Top-level application config
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    vision:       VisionConfig
    botframework: dict[str, dict] = Field(default_factory=dict)
