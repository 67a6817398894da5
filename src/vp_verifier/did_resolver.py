"""
DID key resolution for JWS verification.

Resolves the key referenced by a JOSE ``kid`` (or an issuer DID) to a
public JWK.

Supported methods:
- did:jwk (decoded locally)
- did:web (DID Document fetched over HTTPS)
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx
from jwt.utils import base64url_decode


log = logging.getLogger(__name__)


class DIDResolutionError(Exception):
    """Raised when DID resolution fails."""


class DIDResolver:
    """Resolver for did:jwk and did:web identifiers."""

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the DID resolver.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._cache: dict[str, dict[str, Any]] = {}

    def _did_to_url(self, did: str) -> str:
        """Convert a did:web identifier to its resolution URL.

        did:web:example.com -> https://example.com/.well-known/did.json
        did:web:example.com:path:to:doc -> https://example.com/path/to/doc/did.json
        did:web:example.com%3A8080 -> https://example.com:8080/.well-known/did.json

        Raises:
            DIDResolutionError: If the DID format is invalid.
        """
        if not did.startswith("did:web:"):
            raise DIDResolutionError(f"Invalid did:web identifier: {did}")

        parts = did[len("did:web:"):].split("#")[0].split(":")
        domain = parts[0].replace("%3A", ":")

        if len(parts) > 1:
            path = "/" + "/".join(quote(p, safe="") for p in parts[1:]) + "/did.json"
        else:
            path = "/.well-known/did.json"

        return f"https://{domain}{path}"

    async def resolve_key(self, key_id: str) -> dict[str, Any]:
        """Resolve a key reference (DID or DID URL) to a public JWK.

        Args:
            key_id: A DID such as ``did:web:example.com`` or a DID URL with
                a fragment such as ``did:web:example.com#key-1``.

        Returns:
            The public key as a JWK dictionary.

        Raises:
            DIDResolutionError: If the method is unsupported or no key is found.
        """
        did, _, fragment = key_id.partition("#")

        if did.startswith("did:jwk:"):
            return self._decode_did_jwk(did)

        if did.startswith("did:web:"):
            document = await self.resolve_document(did)
            return self._select_key(document, did, fragment)

        raise DIDResolutionError(f"Unsupported DID method: {did}")

    async def resolve_document(self, did: str, use_cache: bool = True) -> dict[str, Any]:
        """Fetch the DID Document of a did:web identifier.

        Raises:
            DIDResolutionError: If fetching fails or the document id mismatches.
        """
        if use_cache and did in self._cache:
            return self._cache[did]

        url = self._did_to_url(did)
        log.debug("Resolving %s via %s", did, url)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = await client.get(
                    url,
                    headers={"Accept": "application/did+ld+json, application/json"},
                )
                response.raise_for_status()
                document = response.json()
        except httpx.HTTPStatusError as e:
            raise DIDResolutionError(
                f"HTTP error resolving {did}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise DIDResolutionError(f"Network error resolving {did}: {e}") from e
        except ValueError as e:
            raise DIDResolutionError(f"Invalid JSON in DID Document for {did}") from e

        if not isinstance(document, dict) or document.get("id") != did:
            raise DIDResolutionError(
                f"DID Document id mismatch: expected {did}, got "
                f"{document.get('id') if isinstance(document, dict) else None}"
            )

        if use_cache:
            self._cache[did] = document
        return document

    def _decode_did_jwk(self, did: str) -> dict[str, Any]:
        try:
            jwk = json.loads(base64url_decode(did[len("did:jwk:"):]))
        except (ValueError, TypeError) as e:
            raise DIDResolutionError(f"Invalid did:jwk identifier: {did}") from e
        if not isinstance(jwk, dict) or "kty" not in jwk:
            raise DIDResolutionError(f"did:jwk does not encode a JWK: {did}")
        return jwk

    def _select_key(self, document: dict[str, Any], did: str, fragment: str) -> dict[str, Any]:
        """Pick the verification method matching the fragment, or the first one."""
        methods = document.get("verificationMethod", [])
        wanted = {f"{did}#{fragment}", f"#{fragment}"} if fragment else None

        for method in methods:
            if wanted is not None and method.get("id") not in wanted:
                continue
            if "publicKeyJwk" in method:
                return method["publicKeyJwk"]

        target = f"{did}#{fragment}" if fragment else did
        raise DIDResolutionError(f"No publicKeyJwk found for {target}")

    def clear_cache(self) -> None:
        """Clear the resolution cache."""
        self._cache.clear()
