"""Engine configuration.

Resolution order (later wins):

    1. defaults below
    2. {data_dir}/config.json, if present
    3. NEARFIELD_* environment variables (a .env file is loaded first)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from nearfield.llm import ProviderFormat

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_CONTENT_PATH = PROJECT_ROOT / "presets"

_ENV_KEYS: dict[str, str] = {
    "NEARFIELD_DATA_DIR": "data_dir",
    "NEARFIELD_CONTENT": "content_path",
    "NEARFIELD_PLAYER_ID": "player_id",
    "NEARFIELD_DIALOGUE": "dialogue_provider",
    "NEARFIELD_LLM_URL": "llm_url",
    "NEARFIELD_LLM_API_KEY": "llm_api_key",
    "NEARFIELD_LLM_FORMAT": "llm_format",
    "NEARFIELD_LLM_MODEL": "llm_model",
}


class Delays(BaseModel):
    """Pacing delays in seconds."""

    narrative: float = Field(default=1.0, ge=0)
    interaction_resume: float = Field(default=1.5, ge=0)
    scene_transition: float = Field(default=1.5, ge=0)
    story_exit: float = Field(default=2.0, ge=0)


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    content_path: Path = DEFAULT_CONTENT_PATH
    player_id: str = "demo-player"
    seed_inbox: bool = True
    dialogue_provider: Literal["scripted", "llm"] = "scripted"
    llm_url: str = "http://localhost:5001"
    llm_api_key: str = ""
    llm_format: ProviderFormat = "koboldcpp"
    llm_model: str = ""
    delays: Delays = Field(default_factory=Delays)

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / "instances.json"


def load_settings(data_dir: Path | None = None, env_file: Path | None = None) -> Settings:
    """Build settings from defaults, config.json and the environment."""
    load_dotenv(env_file or PROJECT_ROOT / ".env")

    values: dict[str, Any] = {}
    resolved_dir = data_dir or Path(os.getenv("NEARFIELD_DATA_DIR", str(DEFAULT_DATA_DIR)))
    config_path = resolved_dir / "config.json"
    if config_path.is_file():
        stored = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(stored, dict):
            raise ValueError(f"{config_path} must contain a JSON object")
        values.update(stored)
        logger.debug("Loaded config from %s", config_path)

    for env_key, field in _ENV_KEYS.items():
        value = os.getenv(env_key)
        if value:
            values[field] = value

    values["data_dir"] = resolved_dir
    return Settings.model_validate(values)
