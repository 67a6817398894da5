"""
Compact JWS helpers.

Decodes JWT credentials and presentations and verifies their signatures
against a public JWK with PyJWT. Supported algorithms:
- ES256 (P-256)
- EdDSA (Ed25519)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt


SUPPORTED_ALGORITHMS = {"ES256", "EdDSA"}

# Dates are checked by the `expired`/`not-before` policies, audience and
# nonce binding by the session, so only the signature is verified here.
_SIGNATURE_ONLY = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


class JWTError(ValueError):
    """Raised when a token is not a well-formed compact JWS."""


@dataclass(frozen=True)
class DecodedJWT:
    """A compact JWS with its unverified header and payload."""

    raw: str
    header: dict[str, Any]
    payload: dict[str, Any]

    @property
    def algorithm(self) -> str | None:
        return self.header.get("alg")


def is_jwt(value: Any) -> bool:
    """Check whether a value looks like a compact JWS."""
    return isinstance(value, str) and value.count(".") == 2 and not value.lstrip().startswith(("{", "["))


def decode_jwt(token: str) -> DecodedJWT:
    """Decode a compact JWS without verifying it.

    Raises:
        JWTError: If the token is not a compact JWS with JSON header and payload.
    """
    if not is_jwt(token):
        raise JWTError("Not a compact JWS")

    token = token.strip()
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise JWTError(f"Malformed JWT: {e}") from e

    return DecodedJWT(raw=token, header=header, payload=payload)


def verify_jws(token: DecodedJWT, jwk: dict[str, Any]) -> bool:
    """Verify the signature of a decoded JWS with a public JWK.

    Returns:
        True if the signature is valid, False otherwise.

    Raises:
        JWTError: If the algorithm or key is unsupported, or they do not match.
    """
    alg = token.algorithm
    if alg not in SUPPORTED_ALGORITHMS:
        raise JWTError(f"Unsupported JWS algorithm: {alg}")

    try:
        signing_key = jwt.PyJWK(jwk)
    except jwt.PyJWTError as e:
        raise JWTError(f"Unsupported key: {e}") from e
    if signing_key.algorithm_name != alg:
        raise JWTError(f"{alg} token cannot be verified with a {signing_key.algorithm_name} key")

    try:
        jwt.decode(token.raw, signing_key.key, algorithms=[alg], options=_SIGNATURE_ONLY)
    except jwt.InvalidSignatureError:
        return False
    except jwt.PyJWTError as e:
        raise JWTError(str(e)) from e
    return True
