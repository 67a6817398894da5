"""Parsing of verification-session initialization requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from vp_verifier.policies import (
    PolicyManager,
    PolicyRequest,
    PolicyTarget,
    parse_policy_request,
    parse_policy_requests,
)


DEFAULT_POLICY = "signature"


class InvalidVerificationRequest(ValueError):
    """Raised when a session-init request is malformed."""


class InvalidRequestCredentials(InvalidVerificationRequest):
    """Raised when ``request_credentials`` is missing, empty, or has invalid entries."""


class MissingCredentialName(InvalidVerificationRequest):
    """Raised when a ``request_credentials`` object has no ``credential``."""


class MissingPolicies(InvalidVerificationRequest):
    """Raised when a ``request_credentials`` object has no ``policies``."""


@dataclass
class VerificationRequest:
    """A parsed session-init request body."""

    vp_policies: list[PolicyRequest]
    vc_policies: list[PolicyRequest]
    requested_types: list[str]
    specific_policies: dict[str, list[PolicyRequest]] = field(default_factory=dict)
    presentation_definition: dict[str, Any] | None = None

    @classmethod
    def from_json(cls, body: Any, manager: PolicyManager) -> VerificationRequest:
        """Parse a session-init request body.

        Missing ``vp_policies``/``vc_policies`` default to the signature
        policy. ``request_credentials`` entries are either a type name or
        ``{"credential": <type>, "policies": [...]}``.

        Raises:
            InvalidVerificationRequest: On any malformed field.
            MalformedPolicyRequest: On an invalid policy spec.
        """
        if not isinstance(body, Mapping):
            raise InvalidVerificationRequest("Request body must be a JSON object")

        vp_policies = _policies_or_default(body.get("vp_policies"), manager, PolicyTarget.PRESENTATION)
        vc_policies = _policies_or_default(body.get("vc_policies"), manager, PolicyTarget.CREDENTIAL)

        requested = body.get("request_credentials")
        if not isinstance(requested, list) or not requested:
            raise InvalidRequestCredentials("`request_credentials` must be a non-empty JSON array")

        requested_types: list[str] = []
        specific_policies: dict[str, list[PolicyRequest]] = {}
        for entry in requested:
            if isinstance(entry, str) and entry:
                requested_types.append(entry)
            elif isinstance(entry, Mapping):
                vc_type, policies = _parse_specific_entry(entry, manager)
                requested_types.append(vc_type)
                specific_policies.setdefault(vc_type, []).extend(policies)
            else:
                raise InvalidRequestCredentials(f"Invalid JSON type for requested credential: {entry!r}")

        definition = body.get("presentation_definition")
        if definition is not None and not isinstance(definition, Mapping):
            raise InvalidVerificationRequest("`presentation_definition` must be a JSON object")

        return cls(
            vp_policies=vp_policies,
            vc_policies=vc_policies,
            requested_types=requested_types,
            specific_policies=specific_policies,
            presentation_definition=dict(definition) if definition is not None else None,
        )


def _policies_or_default(
    specs: Any,
    manager: PolicyManager,
    target: PolicyTarget,
) -> list[PolicyRequest]:
    if specs is None:
        return [parse_policy_request(DEFAULT_POLICY, manager, target)]
    return parse_policy_requests(specs, manager, target)


def _parse_specific_entry(entry: Mapping[str, Any], manager: PolicyManager) -> tuple[str, list[PolicyRequest]]:
    if "credential" not in entry:
        raise MissingCredentialName("No `credential` name supplied, in `request_credentials`.")
    vc_type = entry["credential"]
    if not isinstance(vc_type, str) or not vc_type:
        raise InvalidRequestCredentials(f"Invalid VC type for requested credential: {entry!r}")

    if "policies" not in entry:
        raise MissingPolicies("No `policies` supplied, in `request_credentials`.")
    return vc_type, parse_policy_requests(entry["policies"], manager, PolicyTarget.CREDENTIAL)
