"""
Built-in verification policies.

Policies receive either a ``PresentedCredential`` or the
``VerifiablePresentation`` and raise ``PolicyViolation`` when the check fails.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from vp_verifier.did_resolver import DIDResolutionError, DIDResolver
from vp_verifier.jose import JWTError, verify_jws
from vp_verifier.policies import Policy, PolicyTarget, PolicyViolation, VerificationContext
from vp_verifier.submission import VerifiablePresentation


PRESENTATION_ONLY = frozenset({PolicyTarget.PRESENTATION})
CREDENTIAL_ONLY = frozenset({PolicyTarget.CREDENTIAL})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime | None:
    """Parse a NumericDate (JWT) or an ISO 8601 timestamp (W3C VC)."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise PolicyViolation(f"Invalid timestamp: {value}") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise PolicyViolation(f"Invalid timestamp: {value!r}")


def _body(data: Any) -> dict[str, Any]:
    """The W3C object (credential or presentation) behind the checked data."""
    if isinstance(data, VerifiablePresentation):
        return data.presentation
    return data.credential


class JwtSignaturePolicy(Policy):
    """Checks the JWS signature of a JWT credential or presentation."""

    name = "signature"
    description = "Checks a JWT credential by verifying its cryptographic signature using the key referenced by the DID in `iss`."

    def __init__(self, did_resolver: DIDResolver | None = None) -> None:
        self.did_resolver = did_resolver or DIDResolver()

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        token = data.jwt
        if token is None:
            raise PolicyViolation("Signature policy requires a JWT; data-integrity proofs are not supported")

        jwk = token.header.get("jwk")
        key_id = token.header.get("kid") or token.payload.get("iss")
        if not isinstance(jwk, dict):
            if not isinstance(key_id, str):
                raise PolicyViolation("JWT header has neither `jwk` nor `kid`, and no `iss` claim")
            if not key_id.startswith("did:"):
                # relative kid, resolved against the issuer DID
                key_id = f"{token.payload.get('iss')}#{key_id.lstrip('#')}"
            try:
                jwk = await self.did_resolver.resolve_key(key_id)
            except DIDResolutionError as e:
                raise PolicyViolation(f"Could not resolve key {key_id}: {e}") from e

        try:
            valid = verify_jws(token, jwk)
        except JWTError as e:
            raise PolicyViolation(str(e)) from e
        if not valid:
            raise PolicyViolation("Invalid signature")
        return {"alg": token.algorithm, "kid": key_id}


class ExpirationDatePolicy(Policy):
    name = "expired"
    description = "Verifies that the credential's expiration date has not been exceeded."

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        body = _body(data)
        for claim, value in (
            ("exp", data.claims.get("exp")),
            ("validUntil", body.get("validUntil")),
            ("expirationDate", body.get("expirationDate")),
        ):
            expires = _parse_time(value)
            if expires is None:
                continue
            now = _now()
            if expires <= now:
                raise PolicyViolation(
                    f"Expired at {expires.isoformat()} ({claim})",
                    detail={"expired": expires.isoformat(), "now": now.isoformat()},
                )
            return {"claim": claim, "expires": expires.isoformat()}
        return {"policy_available": False}


class NotBeforeDatePolicy(Policy):
    name = "not-before"
    description = "Verifies that the credential's not-before date is correctly exceeded."

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        body = _body(data)
        for claim, value in (
            ("nbf", data.claims.get("nbf")),
            ("validFrom", body.get("validFrom")),
            ("issuanceDate", body.get("issuanceDate")),
        ):
            not_before = _parse_time(value)
            if not_before is None:
                continue
            now = _now()
            if not_before > now:
                raise PolicyViolation(
                    f"Not valid before {not_before.isoformat()} ({claim})",
                    detail={"not_before": not_before.isoformat(), "now": now.isoformat()},
                )
            return {"claim": claim, "not_before": not_before.isoformat()}
        return {"policy_available": False}


class AllowedIssuerPolicy(Policy):
    name = "allowed-issuer"
    description = "Checks that the issuer of the credential is present in the supplied list."
    targets = CREDENTIAL_ONLY
    requires_args = True

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        allowed = [args] if isinstance(args, str) else list(args)
        if data.issuer not in allowed:
            raise PolicyViolation(f"Issuer {data.issuer} is not allowed", detail={"issuer": data.issuer})
        return {"issuer": data.issuer}


class HolderBindingPolicy(Policy):
    name = "holder-binding"
    description = "Verifies that the presenter of the presentation is the subject of every credential."
    targets = PRESENTATION_ONLY

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        holder = data.holder
        if holder is None:
            raise PolicyViolation("Presentation has no holder")
        mismatched = [c.id for c in data.credentials if c.subject_id != holder]
        if mismatched:
            raise PolicyViolation(
                f"Holder {holder} is not the subject of: {', '.join(mismatched)}",
                detail={"holder": holder, "credentials": mismatched},
            )
        return {"holder": holder}


class MinimumCredentialsPolicy(Policy):
    name = "minimum-credentials"
    description = "Verifies that a minimum number of credentials is included in the presentation."
    targets = PRESENTATION_ONLY
    requires_args = True

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        count = len(data.credentials)
        if count < int(args):
            raise PolicyViolation(f"Presentation has {count} credentials, at least {args} required")
        return {"total": count, "minimum": int(args)}


class MaximumCredentialsPolicy(Policy):
    name = "maximum-credentials"
    description = "Verifies that a maximum number of credentials is not exceeded in the presentation."
    targets = PRESENTATION_ONLY
    requires_args = True

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        count = len(data.credentials)
        if count > int(args):
            raise PolicyViolation(f"Presentation has {count} credentials, at most {args} allowed")
        return {"total": count, "maximum": int(args)}


class PresentationDefinitionPolicy(Policy):
    name = "presentation-definition"
    description = "Verifies that every input descriptor of the presentation definition was submitted."
    targets = PRESENTATION_ONLY

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        definition = context.presentation_definition
        if definition is None:
            raise PolicyViolation("No presentation definition for this session")
        requested = [d.id for d in definition.input_descriptors]
        submitted = {c.id for c in data.credentials} | {c.type for c in data.credentials}
        missing = [d for d in requested if d not in submitted]
        if missing:
            raise PolicyViolation(
                f"Missing credentials for input descriptors: {', '.join(missing)}",
                detail={"requested": requested, "missing": missing},
            )
        return {"requested": requested}


class WebhookPolicy(Policy):
    """Delegates the decision to an HTTP endpoint.

    The decoded claims are POSTed as JSON; any 2xx response passes.
    """

    name = "webhook"
    description = "Sends the credential data to a webhook URL; passes on a 2xx response."
    requires_args = True

    def __init__(self, timeout: float = 30.0, verify_ssl: bool = True) -> None:
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        url = args.get("url") if isinstance(args, dict) else args
        if not isinstance(url, str):
            raise PolicyViolation(f"Invalid webhook arguments: {args!r}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = await client.post(url, json=data.claims)
        except httpx.RequestError as e:
            raise PolicyViolation(f"Webhook request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = response.text or None
        if not response.is_success:
            raise PolicyViolation(f"Webhook returned HTTP {response.status_code}", detail=body)
        return body


def builtin_policies(
    did_resolver: DIDResolver | None = None,
    http_timeout: float = 30.0,
    verify_ssl: bool = True,
) -> list[Policy]:
    """Instantiate every built-in policy."""
    return [
        JwtSignaturePolicy(did_resolver or DIDResolver(timeout=http_timeout, verify_ssl=verify_ssl)),
        ExpirationDatePolicy(),
        NotBeforeDatePolicy(),
        AllowedIssuerPolicy(),
        HolderBindingPolicy(),
        MinimumCredentialsPolicy(),
        MaximumCredentialsPolicy(),
        PresentationDefinitionPolicy(),
        WebhookPolicy(timeout=http_timeout, verify_ssl=verify_ssl),
    ]
