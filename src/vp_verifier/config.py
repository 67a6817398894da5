"""
Verifier configuration.

Every setting has a default and can be overridden through an environment
variable named ``VP_VERIFIER_<FIELD>`` (e.g. ``VP_VERIFIER_BASE_URL``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping


ENV_PREFIX = "VP_VERIFIER_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class VerifierConfig:
    """Settings of the verifier service."""

    # Public URL of this service, used in authorization requests
    base_url: str = "http://localhost:7003"
    client_id: str | None = None

    session_ttl_seconds: float = 300.0
    policy_timeout_seconds: float = 30.0

    # Outbound HTTP made by policies (did:web, webhook)
    http_timeout_seconds: float = 30.0
    verify_ssl: bool = True

    inline_presentation_definition: bool = False

    host: str = "0.0.0.0"
    port: int = 7003
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def effective_client_id(self) -> str:
        return self.client_id or self.base_url.rstrip("/")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> VerifierConfig:
        """Load the configuration from environment variables.

        Args:
            environ: Mapping to read from; defaults to ``os.environ``.
            **overrides: Values taking precedence over the environment
                (``None`` values are ignored).

        Raises:
            ValueError: If a variable cannot be converted to the field type.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                values[f.name] = _convert(f.name, f.type, raw)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _convert(name: str, type_name: Any, raw: str) -> Any:
    type_name = str(type_name)
    try:
        if type_name == "bool":
            lowered = raw.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(raw)
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from None
    return raw
