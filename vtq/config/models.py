import os
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from vtq.domain.models import EncodingSettings
from vtq.infrastructure.file_scanner import DEFAULT_EXTENSIONS


def default_concurrency() -> int:
    """One job per four logical cores, at least one.

    Each encode saturates several cores (or a GPU engine) on its own.
    """
    return max(1, (os.cpu_count() or 1) // 4)


class GeneralConfig(BaseModel):
    max_concurrent: Optional[int] = Field(default=None, ge=1)  # None -> default_concurrency()
    output_dir: Optional[str] = None
    recursive: bool = False
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    session_db: str = "vtq_sessions.db"
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("extensions must not be empty")
        return normalized

    def resolved_concurrency(self) -> int:
        return self.max_concurrent or default_concurrency()


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoding: EncodingSettings = Field(default_factory=EncodingSettings)
