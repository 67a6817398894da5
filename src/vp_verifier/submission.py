"""
Wallet response decoding.

Turns the form parameters posted by a holder wallet (``vp_token`` and
``presentation_submission``) into a verifiable presentation and the
individual credentials it carries.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from vp_verifier.jose import DecodedJWT, JWTError, decode_jwt, is_jwt


class TokenDecodeFailure(ValueError):
    """Raised when a wallet response cannot be parsed."""


_PATH_TOKEN = re.compile(r"\.([A-Za-z_$@][\w$@-]*)|\[(\d+)\]|\[['\"]([^'\"]+)['\"]\]")


def select_path(document: Any, path: str) -> Any:
    """Evaluate a simple JSONPath (``$``, ``.key``, ``['key']``, ``[n]``).

    Raises:
        TokenDecodeFailure: If the path is unsupported or does not match.
    """
    if not path.startswith("$"):
        raise TokenDecodeFailure(f"Unsupported JSONPath: {path}")

    position = 1
    current = document
    while position < len(path):
        match = _PATH_TOKEN.match(path, position)
        if match is None:
            raise TokenDecodeFailure(f"Unsupported JSONPath: {path}")
        key, index, quoted = match.groups()
        try:
            if index is not None:
                current = current[int(index)]
            else:
                current = current[key if key is not None else quoted]
        except (KeyError, IndexError, TypeError):
            raise TokenDecodeFailure(f"JSONPath {path} does not match the presentation") from None
        position = match.end()
    return current


@dataclass(frozen=True)
class DescriptorMapping:
    """Maps one input descriptor to the location of a submitted credential."""

    id: str
    format: str
    path: str
    path_nested: DescriptorMapping | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DescriptorMapping:
        try:
            nested = data.get("path_nested")
            return cls(
                id=str(data["id"]),
                format=str(data["format"]),
                path=str(data["path"]),
                path_nested=cls.from_dict(nested) if isinstance(nested, Mapping) else None,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise TokenDecodeFailure(f"Invalid descriptor_map entry: {data!r}") from e

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "format": self.format, "path": self.path}
        if self.path_nested is not None:
            data["path_nested"] = self.path_nested.to_dict()
        return data


@dataclass(frozen=True)
class PresentationSubmission:
    """The wallet's mapping of submitted credentials to input descriptors."""

    id: str
    definition_id: str
    descriptor_map: list[DescriptorMapping] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PresentationSubmission:
        if not isinstance(data, Mapping):
            raise TokenDecodeFailure("presentation_submission must be a JSON object")
        descriptors = data.get("descriptor_map", [])
        if not isinstance(descriptors, list):
            raise TokenDecodeFailure("descriptor_map must be a JSON array")
        try:
            return cls(
                id=str(data["id"]),
                definition_id=str(data["definition_id"]),
                descriptor_map=[DescriptorMapping.from_dict(d) for d in descriptors],
            )
        except KeyError as e:
            raise TokenDecodeFailure(f"presentation_submission is missing {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "definition_id": self.definition_id,
            "descriptor_map": [d.to_dict() for d in self.descriptor_map],
        }


@dataclass
class PresentedCredential:
    """A credential extracted from a presentation."""

    id: str
    format: str
    raw: str | dict[str, Any]
    claims: dict[str, Any]
    jwt: DecodedJWT | None = None

    @classmethod
    def decode(cls, value: Any, id: str, format: str) -> PresentedCredential:
        if is_jwt(value):
            token = _decode(value)
            credential = cls(id=id, format=format, raw=value, claims=token.payload, jwt=token)
        elif isinstance(value, dict):
            credential = cls(id=id, format=format, raw=value, claims=value)
        else:
            raise TokenDecodeFailure(f"Credential {id} is neither a JWT nor a JSON object")

        types = credential.credential.get("type", [])
        if not isinstance(types, (str, list)):
            raise TokenDecodeFailure(f"Credential {id} has an invalid type: {types!r}")
        return credential

    @property
    def credential(self) -> dict[str, Any]:
        """The W3C credential body (``vc`` claim of a JWT VC, else the claims)."""
        vc = self.claims.get("vc")
        return vc if isinstance(vc, dict) else self.claims

    @property
    def types(self) -> list[str]:
        types = self.credential.get("type", [])
        if isinstance(types, str):
            return [types]
        return [t for t in types if isinstance(t, str)]

    @property
    def type(self) -> str | None:
        """The most specific type, i.e. the last listed one."""
        return self.types[-1] if self.types else None

    @property
    def issuer(self) -> str | None:
        issuer = self.credential.get("issuer", self.claims.get("iss"))
        if isinstance(issuer, dict):
            return issuer.get("id")
        return issuer

    @property
    def subject_id(self) -> str | None:
        subject = self.credential.get("credentialSubject")
        if isinstance(subject, dict) and subject.get("id"):
            return subject["id"]
        return self.claims.get("sub")


@dataclass
class VerifiablePresentation:
    """A decoded vp_token and the credentials located through the submission."""

    raw: str | dict[str, Any]
    claims: dict[str, Any]
    credentials: list[PresentedCredential]
    jwt: DecodedJWT | None = None

    @property
    def presentation(self) -> dict[str, Any]:
        vp = self.claims.get("vp")
        return vp if isinstance(vp, dict) else self.claims

    @property
    def holder(self) -> str | None:
        holder = self.presentation.get("holder", self.claims.get("iss"))
        if isinstance(holder, dict):
            return holder.get("id")
        return holder


def _decode(token: str) -> DecodedJWT:
    try:
        return decode_jwt(token)
    except JWTError as e:
        raise TokenDecodeFailure(str(e)) from e


def _select_claims(claims: Any, path: str) -> Any:
    """Select from VP claims, falling back to the `vp` claim of a JWT VP."""
    try:
        return select_path(claims, path)
    except TokenDecodeFailure:
        if isinstance(claims, dict) and isinstance(claims.get("vp"), dict):
            return select_path(claims["vp"], path)
        raise


def _load_json(value: Any, name: str) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError as e:
        raise TokenDecodeFailure(f"{name} is not valid JSON: {e}") from e


@dataclass
class TokenResponse:
    """The wallet's authorization response for the vp_token response type."""

    vp_token: Any
    presentation_submission: PresentationSubmission
    state: str | None = None

    @classmethod
    def from_http_parameters(cls, parameters: Mapping[str, Any]) -> TokenResponse:
        """Build a token response from (form-decoded) HTTP parameters.

        Raises:
            TokenDecodeFailure: If a required parameter is missing or malformed.
        """
        vp_token = parameters.get("vp_token")
        if vp_token in (None, ""):
            raise TokenDecodeFailure("Missing vp_token")
        if not is_jwt(vp_token):
            vp_token = _load_json(vp_token, "vp_token")

        submission = parameters.get("presentation_submission")
        if submission in (None, ""):
            raise TokenDecodeFailure("Missing presentation_submission")

        return cls(
            vp_token=vp_token,
            presentation_submission=PresentationSubmission.from_dict(
                _load_json(submission, "presentation_submission")
            ),
            state=parameters.get("state"),
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "vp_token": self.vp_token,
            "presentation_submission": self.presentation_submission.to_dict(),
            "state": self.state,
        }

    def decode(self) -> VerifiablePresentation:
        """Decode the vp_token and locate every submitted credential.

        Raises:
            TokenDecodeFailure: If the token or a descriptor path is invalid.
        """
        token = self.vp_token
        if isinstance(token, list):
            if len(token) != 1:
                raise TokenDecodeFailure("Multiple vp_token entries are not supported")
            token = token[0]

        if is_jwt(token):
            jwt = _decode(token)
            claims = jwt.payload
        elif isinstance(token, dict):
            jwt, claims = None, token
        else:
            raise TokenDecodeFailure("vp_token is neither a JWT nor a JSON object")

        presentation = VerifiablePresentation(raw=token, claims=claims, credentials=[], jwt=jwt)
        descriptors = self.presentation_submission.descriptor_map

        if descriptors:
            for descriptor in descriptors:
                presentation.credentials.append(self._locate(presentation, descriptor))
        else:
            embedded = presentation.presentation.get("verifiableCredential", [])
            if not isinstance(embedded, list):
                embedded = [embedded]
            for index, value in enumerate(embedded):
                presentation.credentials.append(
                    PresentedCredential.decode(value, id=f"credential-{index}", format="jwt_vc_json")
                )

        if not presentation.credentials:
            raise TokenDecodeFailure("The presentation does not contain any credential")
        return presentation

    def _locate(self, presentation: VerifiablePresentation, descriptor: DescriptorMapping) -> PresentedCredential:
        value = _select_claims(presentation.claims, descriptor.path)
        nested = descriptor.path_nested
        while nested is not None:
            if is_jwt(value):
                value = _decode(value).payload
            value = _select_claims(value, nested.path)
            descriptor, nested = nested, nested.path_nested
        return PresentedCredential.decode(value, id=descriptor.id, format=descriptor.format)
