"""
OpenID4VP authorization requests.

The authorization request is handed to the wallet as query parameters of
the wallet's authorize endpoint (``openid4vp://authorize`` by default).
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from vp_verifier.presentation_definition import PresentationDefinition


class ResponseMode(str, Enum):
    """How the wallet returns the vp_token."""

    QUERY = "query"
    FRAGMENT = "fragment"
    FORM_POST = "form_post"
    DIRECT_POST = "direct_post"
    DIRECT_POST_JWT = "direct_post.jwt"

    @classmethod
    def parse(cls, value: str) -> ResponseMode:
        """Parse a response mode by value (``direct_post``) or name (``DIRECT_POST``)."""
        for mode in cls:
            if value == mode.value or value.upper() == mode.name:
                return mode
        raise ValueError(
            f"Invalid response mode: {value} (expected one of {', '.join(m.value for m in cls)})"
        )

    @property
    def is_direct_post(self) -> bool:
        return self in (ResponseMode.DIRECT_POST, ResponseMode.DIRECT_POST_JWT)


@dataclass(frozen=True)
class AuthorizationRequest:
    """An OpenID4VP authorization request for a vp_token."""

    client_id: str
    response_mode: ResponseMode
    state: str
    nonce: str
    response_uri: str | None = None
    redirect_uri: str | None = None
    presentation_definition: dict[str, Any] | None = None
    presentation_definition_uri: str | None = None
    response_type: str = "vp_token"

    @classmethod
    def for_session(
        cls,
        session_id: str,
        presentation_definition: PresentationDefinition,
        response_mode: ResponseMode,
        base_url: str,
        client_id: str | None = None,
        inline_definition: bool = False,
    ) -> AuthorizationRequest:
        """Build the request the wallet answers for a given session.

        Responses are delivered to ``{base_url}/openid4vc/verify/{state}``;
        the definition is embedded or referenced by
        ``{base_url}/openid4vc/pd/{state}``.
        """
        base_url = base_url.rstrip("/")
        response_endpoint = f"{base_url}/openid4vc/verify/{session_id}"
        return cls(
            client_id=client_id or base_url,
            response_mode=response_mode,
            state=session_id,
            nonce=secrets.token_urlsafe(16),
            response_uri=response_endpoint if response_mode.is_direct_post else None,
            redirect_uri=None if response_mode.is_direct_post else response_endpoint,
            presentation_definition=presentation_definition.to_dict() if inline_definition else None,
            presentation_definition_uri=None if inline_definition else f"{base_url}/openid4vc/pd/{session_id}",
        )

    def to_parameters(self) -> dict[str, str]:
        params = {
            "response_type": self.response_type,
            "client_id": self.client_id,
            "response_mode": self.response_mode.value,
            "response_uri": self.response_uri,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
            "nonce": self.nonce,
            "presentation_definition": (
                json.dumps(self.presentation_definition, separators=(",", ":"))
                if self.presentation_definition is not None
                else None
            ),
            "presentation_definition_uri": self.presentation_definition_uri,
        }
        return {k: v for k, v in params.items() if v is not None}

    def to_http_query_string(self) -> str:
        return urlencode(self.to_parameters())
