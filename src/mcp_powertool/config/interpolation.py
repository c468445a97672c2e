"""Environment variable interpolation for configuration values.

Supports ${VAR_NAME} tokens. Unset variables are left verbatim so the
backend sees the placeholder (and usually fails loudly) rather than an
empty string.
"""

from __future__ import annotations

__all__ = ["interpolate", "interpolate_mapping"]

import os
import re
from collections.abc import Mapping

from mcp_powertool.telemetry.system_logger import get_system_logger

_ENV_TOKEN = re.compile(r"\$\{([^}]+)\}")


def interpolate(value: str, environ: Mapping[str, str] | None = None) -> str:
    """Replace ${VAR} tokens in value from environ (default: os.environ).

    Args:
        value: String that may contain ${VAR} tokens.
        environ: Variable source.

    Returns:
        The interpolated string.
    """
    env = os.environ if environ is None else environ

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        resolved = env.get(var_name)
        if resolved is None:
            get_system_logger().warning(
                {
                    "event": "env_var_undefined",
                    "variable": var_name,
                    "message": f"Environment variable {var_name} is not defined, keeping placeholder",
                }
            )
            return match.group(0)
        return resolved

    return _ENV_TOKEN.sub(_replace, value)


def interpolate_mapping(
    values: Mapping[str, str], environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Interpolate every value of a str->str mapping (keys untouched)."""
    return {key: interpolate(value, environ) for key, value in values.items()}
