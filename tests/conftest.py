"""Shared fixtures: keys, signed JWT credentials and presentations."""

import base64
import json
import time

import jwt
import pytest

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from vp_verifier.config import VerifierConfig
from vp_verifier.orchestrator import VerificationOrchestrator
from vp_verifier.policies import PolicyManager


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def public_jwk(private_key) -> dict:
    """Public JWK of an EC P-256 or Ed25519 private key."""
    public_key = private_key.public_key()
    if isinstance(private_key, Ed25519PrivateKey):
        raw = public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        return {"kty": "OKP", "crv": "Ed25519", "x": b64url(raw)}
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url(numbers.x.to_bytes(32, byteorder="big")),
        "y": b64url(numbers.y.to_bytes(32, byteorder="big")),
    }


def did_jwk(private_key) -> str:
    return "did:jwk:" + b64url(json.dumps(public_jwk(private_key)).encode())


def sign_jwt(payload: dict, private_key, kid: str | None = None, header: dict | None = None) -> str:
    """Sign a payload as a compact JWS (ES256 for P-256, EdDSA for Ed25519)."""
    alg = "EdDSA" if isinstance(private_key, Ed25519PrivateKey) else "ES256"
    headers = {"kid": kid} if kid else {}
    headers.update(header or {})
    return jwt.encode(payload, private_key, algorithm=alg, headers=headers)


@pytest.fixture
def issuer_key():
    """EC P-256 issuer key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def holder_key():
    """Ed25519 holder key."""
    return Ed25519PrivateKey.generate()


@pytest.fixture
def make_credential(issuer_key, holder_key):
    """Build a signed JWT VC of a given type for the holder."""

    def _make(vc_type: str = "VerifiableId", expires_in: int | None = 3600, **claims) -> str:
        issuer = did_jwk(issuer_key)
        now = int(time.time())
        payload = {
            "iss": issuer,
            "sub": did_jwk(holder_key),
            "nbf": now - 60,
            "vc": {
                "@context": ["https://www.w3.org/2018/credentials/v1"],
                "type": ["VerifiableCredential", vc_type],
                "issuer": issuer,
                "credentialSubject": {"id": did_jwk(holder_key), **claims},
            },
        }
        if expires_in is not None:
            payload["exp"] = now + expires_in
        return sign_jwt(payload, issuer_key, kid=f"{issuer}#0")

    return _make


@pytest.fixture
def make_response(holder_key):
    """Build wallet response parameters (vp_token + presentation_submission)."""

    def _make(*credentials: tuple[str, str], definition_id: str = "definition") -> dict:
        holder = did_jwk(holder_key)
        vp = {
            "iss": holder,
            "nonce": "n-0S6_WzA2Mj",
            "vp": {
                "@context": ["https://www.w3.org/2018/credentials/v1"],
                "type": ["VerifiablePresentation"],
                "holder": holder,
                "verifiableCredential": [jwt for _, jwt in credentials],
            },
        }
        submission = {
            "id": "submission",
            "definition_id": definition_id,
            "descriptor_map": [
                {
                    "id": descriptor_id,
                    "format": "jwt_vp_json",
                    "path": "$",
                    "path_nested": {
                        "id": descriptor_id,
                        "format": "jwt_vc_json",
                        "path": f"$.verifiableCredential[{index}]",
                    },
                }
                for index, (descriptor_id, _) in enumerate(credentials)
            ],
        }
        return {
            "vp_token": sign_jwt(vp, holder_key, kid=f"{holder}#0"),
            "presentation_submission": json.dumps(submission),
        }

    return _make


@pytest.fixture
def config():
    return VerifierConfig(base_url="https://verifier.example.com", policy_timeout_seconds=5.0)


@pytest.fixture
def policy_manager():
    """A fresh registry with the built-in policies."""
    return PolicyManager.default()


@pytest.fixture
def orchestrator(policy_manager, config):
    return VerificationOrchestrator(policy_manager, config=config)
