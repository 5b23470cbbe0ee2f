"""Configuration — Pydantic models for voxstream settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

NORMAL_MODEL = "deepseek/deepseek-chat:free"
REASONING_MODEL = "deepseek/deepseek-r1:free"

MODEL_ALIASES = {
    "normal": NORMAL_MODEL,
    "reasoning": REASONING_MODEL,
}

DEFAULT_SPACE_ID = "00000000-0000-0000-0000-000000000000"


class ServiceConfig(BaseModel):
    """Agent service endpoint configuration."""

    api_url: str = Field(default="https://voxed.aidanandrews.org/api/v1/agent/run")
    model_name: str = Field(
        default=NORMAL_MODEL,
        description="Model requested from the agent service ('normal' or 'reasoning' aliases accepted)",
    )
    top_k: int = Field(default=5, ge=1, description="Retrieved documents per query")
    timeout: float = Field(default=120.0, gt=0, description="Read timeout in seconds")
    max_retries: int = Field(
        default=3, ge=1, description="Attempts when opening the stream fails transiently"
    )

    def resolved_model(self) -> str:
        return MODEL_ALIASES.get(self.model_name, self.model_name)


class SessionConfig(BaseModel):
    """Chat session configuration."""

    user_id: str | None = Field(default=None)
    space_id: str | None = Field(
        default=None, description="Space new sessions are created in"
    )
    settle_delay: float = Field(
        default=1.0,
        ge=0,
        description="Seconds the pending-session guard stays armed after a transition settles",
    )
    title_length: int = Field(
        default=30, ge=1, description="Characters of the first message used as title"
    )
    session_dir: str = Field(
        default="~/.voxstream/sessions", description="Directory for the local session store"
    )


class VoxStreamConfig(BaseModel):
    """Top-level voxstream configuration."""

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> VoxStreamConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            VOXSTREAM_API_URL       - Agent service endpoint
            VOXSTREAM_MODEL         - Model name (or 'normal' / 'reasoning')
            VOXSTREAM_TOP_K         - Retrieved documents per query
            VOXSTREAM_TIMEOUT       - Read timeout in seconds
            VOXSTREAM_USER_ID       - User id sent with every query
            VOXSTREAM_SPACE_ID      - Space new sessions belong to
            VOXSTREAM_SETTLE_DELAY  - Guard settle delay in seconds
            VOXSTREAM_SESSION_DIR   - Local session store directory
        """
        # override=True so an edited .env wins over stale exported values.
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        service = config_data.get("service", {})
        session = config_data.get("session", {})

        env_api_url = os.environ.get("VOXSTREAM_API_URL")
        if env_api_url:
            service["api_url"] = env_api_url

        env_model = os.environ.get("VOXSTREAM_MODEL")
        if env_model:
            service["model_name"] = env_model

        env_top_k = os.environ.get("VOXSTREAM_TOP_K")
        if env_top_k:
            service["top_k"] = int(env_top_k)

        env_timeout = os.environ.get("VOXSTREAM_TIMEOUT")
        if env_timeout:
            service["timeout"] = float(env_timeout)

        env_user_id = os.environ.get("VOXSTREAM_USER_ID")
        if env_user_id:
            session["user_id"] = env_user_id

        env_space_id = os.environ.get("VOXSTREAM_SPACE_ID")
        if env_space_id:
            session["space_id"] = env_space_id

        env_settle = os.environ.get("VOXSTREAM_SETTLE_DELAY")
        if env_settle:
            session["settle_delay"] = float(env_settle)

        env_session_dir = os.environ.get("VOXSTREAM_SESSION_DIR")
        if env_session_dir:
            session["session_dir"] = env_session_dir

        if service:
            config_data["service"] = service
        if session:
            config_data["session"] = session

        return cls.model_validate(config_data)
