"""
DIF Presentation Exchange definitions.

A presentation definition tells the wallet which credentials the verifier
requires. It is either supplied verbatim by the caller or synthesized from a
list of requested credential types.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping


DEFAULT_FORMAT: dict[str, Any] = {"jwt_vc_json": {"alg": ["EdDSA", "ES256"]}}


class InvalidPresentationDefinition(ValueError):
    """Raised when a supplied presentation definition is malformed."""


@dataclass
class InputDescriptor:
    """Describes one credential the verifier requires."""

    id: str
    format: dict[str, Any] | None = None
    constraints: dict[str, Any] = field(default_factory=dict)
    name: str | None = None
    purpose: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InputDescriptor:
        if not isinstance(data, Mapping) or not isinstance(data.get("id"), str):
            raise InvalidPresentationDefinition(f"Input descriptor without an id: {data!r}")
        return cls(
            id=data["id"],
            format=data.get("format"),
            constraints=dict(data.get("constraints") or {}),
            name=data.get("name"),
            purpose=data.get("purpose"),
        )

    @classmethod
    def for_vc_type(cls, vc_type: str) -> InputDescriptor:
        return cls(
            id=vc_type,
            format=DEFAULT_FORMAT,
            constraints={
                "fields": [
                    {
                        "path": ["$.type"],
                        "filter": {"type": "string", "pattern": vc_type},
                    }
                ]
            },
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.name is not None:
            data["name"] = self.name
        if self.purpose is not None:
            data["purpose"] = self.purpose
        if self.format is not None:
            data["format"] = self.format
        data["constraints"] = self.constraints
        return data


@dataclass
class PresentationDefinition:
    """A DIF presentation definition."""

    id: str
    input_descriptors: list[InputDescriptor]
    name: str | None = None
    purpose: str | None = None
    format: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PresentationDefinition:
        """Parse a presentation definition JSON object.

        Raises:
            InvalidPresentationDefinition: If ``input_descriptors`` is missing
                or any descriptor is malformed.
        """
        if not isinstance(data, Mapping):
            raise InvalidPresentationDefinition("presentation_definition must be a JSON object")
        descriptors = data.get("input_descriptors")
        if not isinstance(descriptors, list):
            raise InvalidPresentationDefinition("presentation_definition has no input_descriptors array")
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            input_descriptors=[InputDescriptor.from_dict(d) for d in descriptors],
            name=data.get("name"),
            purpose=data.get("purpose"),
            format=data.get("format"),
        )

    @classmethod
    def primitive_generation_from_vc_types(cls, vc_types: Iterable[str]) -> PresentationDefinition:
        """Synthesize a definition with one input descriptor per distinct type."""
        unique = list(dict.fromkeys(vc_types))
        return cls(
            id=str(uuid.uuid4()),
            input_descriptors=[InputDescriptor.for_vc_type(t) for t in unique],
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.name is not None:
            data["name"] = self.name
        if self.purpose is not None:
            data["purpose"] = self.purpose
        if self.format is not None:
            data["format"] = self.format
        data["input_descriptors"] = [d.to_dict() for d in self.input_descriptors]
        return data


def resolve_presentation_definition(
    definition: Mapping[str, Any] | None,
    requested_types: Iterable[str],
) -> PresentationDefinition:
    """Produce the canonical definition for a verification session.

    An explicit ``definition`` wins over synthesis from ``requested_types``.
    The definition id is always assigned randomly.
    """
    if definition is not None:
        resolved = PresentationDefinition.from_dict(definition)
        resolved.id = str(uuid.uuid4())
        return resolved
    return PresentationDefinition.primitive_generation_from_vc_types(requested_types)
