from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator


def auto_concurrency() -> int:
    return max(1, os.cpu_count() or 1)


class OutputFormat(str, Enum):
    """How converted math is embedded: PNG data URIs (raster) or inline SVG (vector)."""

    PNG = "png"
    SVG = "svg"

    @property
    def is_vector(self) -> bool:
        return self is OutputFormat.SVG


def default_output_path(input_path: Path) -> Path:
    stem = re.sub(r"\.epub$", "", str(input_path), flags=re.IGNORECASE)
    return Path(stem + ".kindle.epub")


class ConversionOptions(BaseModel):
    input_path: Path
    output_path: Optional[Path] = None
    format: OutputFormat = OutputFormat.PNG
    concurrency: int = auto_concurrency()

    @field_validator("concurrency", mode="before")
    @classmethod
    def _parse_concurrency(cls, value: object) -> object:
        if value is None:
            return auto_concurrency()
        if isinstance(value, str):
            raw = value.strip().lower()
            if raw == "auto":
                return auto_concurrency()
            if not raw.isdigit():
                raise ValueError(f"Invalid concurrency value: {value}. Use auto or a positive integer.")
            return int(raw)
        return value

    @field_validator("concurrency")
    @classmethod
    def _positive_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"Invalid concurrency value: {value}. Use auto or a positive integer.")
        return value

    @model_validator(mode="after")
    def _resolve_paths(self) -> "ConversionOptions":
        self.input_path = self.input_path.resolve()
        if self.output_path is None:
            self.output_path = default_output_path(self.input_path)
        self.output_path = self.output_path.resolve()
        return self
