"""Runtime configuration read from the environment."""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Defaults
OPENAI_BASE_URL = "https://api.openai.com/v1"
MODEL = "gpt-5"
SOLVER_TIMEOUT = 45.0
SOLVER_MAX_TOKENS = 1500
RECENT_PROBLEMS_LIMIT = 10


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


class Settings(BaseModel):
    """Settings for the solver gateway and the HTTP layer."""
    api_key: Optional[str] = None
    base_url: str = OPENAI_BASE_URL
    model: str = MODEL
    timeout: float = SOLVER_TIMEOUT
    max_tokens: int = SOLVER_MAX_TOKENS
    recent_limit: int = RECENT_PROBLEMS_LIMIT

    @property
    def completions_url(self) -> str:
        return self.base_url.rstrip("/") + "/chat/completions"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Read settings from the process environment, filled in from a .env file."""
        # Process environment wins over the file
        load_dotenv(env_file)
        return cls(
            api_key=os.getenv("OPENAI_API_KEY") or None,
            base_url=os.getenv("OPENAI_BASE_URL") or OPENAI_BASE_URL,
            model=os.getenv("SOLVER_MODEL") or MODEL,
            timeout=_env_number("SOLVER_TIMEOUT", SOLVER_TIMEOUT, float),
            max_tokens=_env_number("SOLVER_MAX_TOKENS", SOLVER_MAX_TOKENS, int),
            recent_limit=_env_number("RECENT_PROBLEMS_LIMIT", RECENT_PROBLEMS_LIMIT, int),
        )
