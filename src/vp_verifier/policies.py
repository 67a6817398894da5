"""
Verification policies.

A policy is a named, pluggable check run against a presented credential or
against the presentation as a whole. This module holds the policy registry,
the parser turning loosely-typed JSON policy specs into policy requests, and
the executor fanning policy invocations out concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Sequence


log = logging.getLogger(__name__)


class PolicyTarget(Enum):
    """What a policy is applied to."""

    PRESENTATION = "presentation"
    CREDENTIAL = "credential"


class MalformedPolicyRequest(ValueError):
    """Raised when a policy spec has an invalid shape or names an unknown policy."""


class PolicyViolation(Exception):
    """Raised by a policy when the checked data does not satisfy it."""

    def __init__(self, message: str, detail: Any = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


@dataclass(frozen=True)
class VerificationContext:
    """Session-level data available to every policy invocation."""

    session_id: str
    presentation_definition: Any = None
    presentation: Any = None
    submission: Any = None


class Policy(ABC):
    """Base class for verification policies.

    Subclasses set ``name``, ``description`` and ``targets`` and implement
    ``verify``. ``verify`` returns an optional detail on success and raises
    ``PolicyViolation`` on failure.
    """

    name: str = ""
    description: str = ""
    targets: frozenset[PolicyTarget] = frozenset(PolicyTarget)
    requires_args: bool = False

    @abstractmethod
    async def verify(self, data: Any, args: Any, context: VerificationContext) -> Any:
        """Check ``data`` (a presented credential or the presentation)."""

    def supports(self, target: PolicyTarget) -> bool:
        return target in self.targets

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


@dataclass(frozen=True)
class PolicyRequest:
    """A policy invocation: the resolved policy plus its arguments."""

    policy: Policy
    args: Any = None

    @property
    def name(self) -> str:
        return self.policy.name

    def to_json(self) -> Any:
        if self.args is None:
            return self.name
        return {"policy": self.name, "args": self.args}


@dataclass
class PolicyResult:
    """Outcome of one policy invocation against one target."""

    request: PolicyRequest
    target: str
    success: bool
    detail: Any = None
    error: str | None = None
    kind: PolicyTarget = PolicyTarget.CREDENTIAL

    @property
    def policy(self) -> str:
        return self.request.name

    def to_json(self) -> dict[str, Any]:
        return {
            "policy": self.request.name,
            "description": self.request.policy.description,
            "is_success": self.success,
            "result": self.detail,
            "error": self.error,
        }


class PolicyManager:
    """Registry of policies, keyed by name.

    Registration happens once at startup; afterwards the registry is only read.
    """

    def __init__(self, policies: Iterable[Policy] = ()) -> None:
        self._policies: dict[str, Policy] = {}
        for policy in policies:
            self.register(policy)

    @classmethod
    def default(cls, **options: Any) -> PolicyManager:
        """Create a registry holding every built-in policy.

        Keyword options are passed to ``builtin_policies.builtin_policies``.
        """
        from vp_verifier.builtin_policies import builtin_policies

        return cls(builtin_policies(**options))

    def register(self, policy: Policy) -> None:
        if not policy.name:
            raise ValueError(f"Policy has no name: {policy!r}")
        if policy.name in self._policies:
            raise ValueError(f"A policy with the name \"{policy.name}\" is already registered")
        self._policies[policy.name] = policy

    def get(self, name: str) -> Policy:
        try:
            return self._policies[name]
        except KeyError:
            raise KeyError(f"No policy registered with name: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __len__(self) -> int:
        return len(self._policies)

    def list_policy_descriptions(self) -> dict[str, str]:
        return {name: self._policies[name].description for name in sorted(self._policies)}


def parse_policy_request(
    spec: Any,
    manager: PolicyManager,
    target: PolicyTarget | None = None,
) -> PolicyRequest:
    """Parse a single policy spec.

    A spec is either a bare policy name, or an object
    ``{"policy": <name>, "args": <any>}`` (``name``/``arguments`` are
    accepted as synonyms).

    Raises:
        MalformedPolicyRequest: On any other shape, an unknown policy name,
            missing required arguments, or a policy not applicable to ``target``.
    """
    if isinstance(spec, str):
        name, args = spec, None
    elif isinstance(spec, dict):
        name = spec.get("policy", spec.get("name"))
        args = spec.get("args", spec.get("arguments"))
        if not isinstance(name, str):
            raise MalformedPolicyRequest(f"Policy object without a policy name: {spec}")
    else:
        raise MalformedPolicyRequest(f"Invalid JSON type for policy request: {spec!r}")

    if name not in manager:
        raise MalformedPolicyRequest(f"Unknown policy: {name}")
    policy = manager.get(name)

    if target is not None and not policy.supports(target):
        raise MalformedPolicyRequest(
            f"Policy \"{name}\" cannot be applied to a {target.value}"
        )
    if policy.requires_args and args is None:
        raise MalformedPolicyRequest(f"Policy \"{name}\" requires arguments")

    return PolicyRequest(policy=policy, args=args)


def parse_policy_requests(
    specs: Any,
    manager: PolicyManager,
    target: PolicyTarget | None = None,
) -> list[PolicyRequest]:
    """Parse a JSON array of policy specs, preserving order."""
    if not isinstance(specs, list):
        raise MalformedPolicyRequest(f"Policies must be a JSON array, got: {specs!r}")
    return [parse_policy_request(spec, manager, target) for spec in specs]


@dataclass
class PolicyJob:
    """One policy to run against one target."""

    request: PolicyRequest
    data: Any
    target: str
    kind: PolicyTarget = PolicyTarget.CREDENTIAL


@dataclass
class PolicyExecutor:
    """Runs policy invocations concurrently and joins their outcomes.

    Every invocation is captured independently: a failing or raising policy
    never prevents its siblings from completing. When ``timeout`` elapses,
    all invocations still pending are cancelled and recorded as failed.
    """

    timeout: float | None = 30.0
    timeout_error: str = field(default="timeout")

    async def run(self, job: PolicyJob, context: VerificationContext) -> PolicyResult:
        """Run a single policy invocation, capturing its outcome."""
        try:
            detail = await job.request.policy.verify(job.data, job.request.args, context)
        except PolicyViolation as e:
            return PolicyResult(job.request, job.target, success=False, detail=e.detail, error=e.message, kind=job.kind)
        except Exception as e:
            log.warning(
                "Policy %s raised while checking %s",
                job.request.name, job.target,
                exc_info=True,
                extra={"session_id": context.session_id},
            )
            return PolicyResult(job.request, job.target, success=False, error=f"{type(e).__name__}: {e}", kind=job.kind)
        return PolicyResult(job.request, job.target, success=True, detail=detail, kind=job.kind)

    async def run_all(
        self,
        jobs: Sequence[PolicyJob],
        context: VerificationContext,
    ) -> list[PolicyResult]:
        """Run all jobs concurrently; results keep the order of ``jobs``."""
        if not jobs:
            return []

        tasks = [asyncio.ensure_future(self.run(job, context)) for job in jobs]
        _, pending = await asyncio.wait(tasks, timeout=self.timeout)

        if pending:
            log.warning(
                "%d of %d policies did not finish within %ss",
                len(pending), len(tasks), self.timeout,
                extra={"session_id": context.session_id},
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results: list[PolicyResult] = []
        for job, task in zip(jobs, tasks):
            if task in pending:
                results.append(
                    PolicyResult(job.request, job.target, success=False, error=self.timeout_error, kind=job.kind)
                )
            else:
                results.append(task.result())
        return results
