"""Kanban board layout, loaded from YAML."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import structlog
import yaml
from pydantic import BaseModel, field_validator

from crm_pipeline.config import settings
from crm_pipeline.schemas.crm import STAGES

logger = structlog.get_logger()


class StageDefinition(BaseModel):
    value: str
    label: str
    color: str = "bg-slate-500"


class BoardConfig(BaseModel):
    stages: list[StageDefinition]
    action_labels: dict[str, str] = {}

    @field_validator("stages")
    @classmethod
    def _funnel_order(cls, stages: list[StageDefinition]) -> list[StageDefinition]:
        values = tuple(s.value for s in stages)
        if values != STAGES:
            raise ValueError(f"Board stages must be {list(STAGES)} in that order, got {list(values)}")
        return stages

    @property
    def stage_values(self) -> list[str]:
        return [s.value for s in self.stages]

    def action_label(self, action: str) -> str:
        return self.action_labels.get(action, action)


DEFAULT_BOARD = BoardConfig(
    stages=[StageDefinition(value=s, label=s.replace("_", " ").title()) for s in STAGES],
)


def parse_board_config(text: str) -> BoardConfig:
    """Parse and validate a board YAML document. Raises on invalid input."""
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Board config must be a YAML mapping")
    return BoardConfig.model_validate(data)


def load_board_config(path: Optional[Path] = None) -> BoardConfig:
    path = path or settings.board_config_path
    if not path.exists():
        logger.info("board_config_missing_using_defaults", path=str(path))
        return DEFAULT_BOARD
    return parse_board_config(path.read_text(encoding="utf-8"))


@lru_cache
def get_board_config() -> BoardConfig:
    return load_board_config()
