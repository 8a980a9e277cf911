"""Loading ClientConfig from the environment."""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from requestmesh.core.models import ClientConfig

ENV_PREFIX = "REQUESTMESH_"


def load_config(env_file: str | Path | None = None, **overrides: Any) -> ClientConfig:
    """Build a ClientConfig from ``REQUESTMESH_*`` environment variables.

    Variables already set in the process environment win over values from
    the ``.env`` file. Keyword overrides win over both.

    Args:
        env_file: Optional path to a .env file (defaults to dotenv's lookup)
        **overrides: Field values that take precedence over the environment

    Returns:
        Validated ClientConfig
    """
    if env_file is not None:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    values: dict[str, Any] = {}
    for name in ClientConfig.model_fields:
        raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = raw

    values.update(overrides)
    return ClientConfig.model_validate(values)
