from __future__ import annotations

import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from propbind.core.exceptions import FallbackPolicy
from propbind.engine.dispatcher import PathMatchPolicy


def _env_flag(name: str, default: str) -> str:
    val = os.getenv(name)
    return val if val not in (None, "") else default


class EngineSettings(BaseModel):
    """Runtime configuration of the binding engine.

    Static decisions about HOW the engine behaves; the schemas, bindings and
    data graph are supplied by the host editor at runtime.
    """

    log_level: str = "INFO"
    path_match_policy: PathMatchPolicy = PathMatchPolicy.OVERLAP
    fallback_policy: FallbackPolicy = FallbackPolicy.WARN

    # Section policy check for non-bindable properties (relaxed by default)
    enforce_section_policy: bool = False
    renderable_sections: Tuple[str, ...] = Field(default=("settings", "style"))

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value!r}")
        return upper

    @classmethod
    def from_env(cls, prefix: str = "PROPBIND_", *, overrides: Optional[dict] = None) -> "EngineSettings":
        """Build settings from environment variables.

        PROPBIND_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
        PROPBIND_PATH_MATCH_POLICY: exact | ancestors | overlap (default: overlap)
        PROPBIND_FALLBACK_POLICY: warn | allow (default: warn)
        PROPBIND_ENFORCE_SECTION_POLICY: "true" | "false" (default: "false")
        PROPBIND_RENDERABLE_SECTIONS: comma list (default: "settings,style")
        """
        sections = [
            s.strip()
            for s in _env_flag(f"{prefix}RENDERABLE_SECTIONS", "settings,style").split(",")
            if s.strip()
        ]
        values = {
            "log_level": _env_flag(f"{prefix}LOG_LEVEL", "INFO"),
            "path_match_policy": _env_flag(f"{prefix}PATH_MATCH_POLICY", "overlap").lower(),
            "fallback_policy": _env_flag(f"{prefix}FALLBACK_POLICY", "warn").lower(),
            "enforce_section_policy": _env_flag(f"{prefix}ENFORCE_SECTION_POLICY", "false").lower() == "true",
            "renderable_sections": tuple(sections),
        }
        values.update(overrides or {})
        return cls.model_validate(values)
