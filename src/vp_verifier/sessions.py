"""
In-flight presentation sessions.

The store keeps each session together with its verification information
and, once a wallet answered, the last verification result. Sessions expire
passively: an expired session is treated as absent when accessed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

from vp_verifier.authorization import AuthorizationRequest, ResponseMode
from vp_verifier.policies import PolicyRequest, PolicyResult
from vp_verifier.presentation_definition import PresentationDefinition
from vp_verifier.submission import TokenResponse


log = logging.getLogger(__name__)


class SessionNotFound(LookupError):
    """Raised when a session id is unknown or the session expired."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No such session (unknown or expired): {session_id}")


class MissingVerificationInfo(RuntimeError):
    """Raised when a session has no verification information.

    Verification information is always stored with its session, so this
    signals an internal invariant violation.
    """


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PresentationSession:
    """A presentation session awaiting (or holding) a wallet response."""

    id: str
    presentation_definition: PresentationDefinition
    authorization_request: AuthorizationRequest
    response_mode: ResponseMode
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def authorization_url(self, authorize_base_url: str) -> str:
        return f"{authorize_base_url}?{self.authorization_request.to_http_query_string()}"


@dataclass(frozen=True)
class SessionVerificationInfo:
    """Policies and redirect templates configured for a session."""

    vp_policies: tuple[PolicyRequest, ...]
    vc_policies: tuple[PolicyRequest, ...]
    specific_policies: Mapping[str, tuple[PolicyRequest, ...]] = field(default_factory=dict)
    success_redirect_uri: str | None = None
    error_redirect_uri: str | None = None

    def credential_policies(self, credential_type: str | None) -> list[PolicyRequest]:
        """Global credential policies followed by those specific to the type."""
        specific = self.specific_policies.get(credential_type, ()) if credential_type else ()
        return [*self.vc_policies, *specific]


@dataclass
class PresentationSessionResult:
    """Outcome of a verification attempt.

    ``verification_result`` is None until a wallet response was verified.
    """

    verification_result: bool | None = None
    policy_results: list[PolicyResult] = field(default_factory=list)
    token_response: TokenResponse | None = None
    error: str | None = None
    time: datetime = field(default_factory=_utcnow)

    @property
    def failed_results(self) -> list[PolicyResult]:
        return [r for r in self.policy_results if not r.success]


@dataclass
class SessionEntry:
    """A stored session with its verification info, last result and lock.

    Holders of an entry keep working on it even if the session expires in
    the meantime; expiry only hides it from new lookups.
    """

    session: PresentationSession
    info: SessionVerificationInfo
    result: PresentationSessionResult | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionStore:
    """Keyed in-memory storage for presentation sessions.

    Each session owns a lock; holding it serializes verification attempts
    for that session without affecting other sessions.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the store.

        Args:
            ttl_seconds: Lifetime of a session, from creation.
            clock: Returns the current time (timezone-aware).
        """
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: dict[str, SessionEntry] = {}

    def new_expiry(self) -> tuple[datetime, datetime]:
        """Return (created_at, expires_at) for a session created now."""
        now = self.clock()
        return now, now + self.ttl

    def put(self, session: PresentationSession, info: SessionVerificationInfo) -> None:
        """Store a session together with its verification information."""
        self.sweep_expired()
        if session.id in self._entries:
            raise ValueError(f"Session already exists: {session.id}")
        self._entries[session.id] = SessionEntry(session=session, info=info)

    def _entry(self, session_id: str) -> SessionEntry | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if entry.session.is_expired(self.clock()):
            log.debug("Session %s expired", session_id, extra={"session_id": session_id})
            self._entries.pop(session_id, None)
            return None
        return entry

    def entry(self, session_id: str) -> SessionEntry:
        """The live entry of a session.

        Raises:
            SessionNotFound: If the session is unknown or expired.
        """
        entry = self._entry(session_id)
        if entry is None:
            raise SessionNotFound(session_id)
        return entry

    def get(self, session_id: str) -> PresentationSession | None:
        entry = self._entry(session_id)
        return entry.session if entry else None

    def require(self, session_id: str) -> PresentationSession:
        """Like ``get``, but raises ``SessionNotFound`` for unknown/expired ids."""
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def get_verification_info(self, session_id: str) -> SessionVerificationInfo | None:
        entry = self._entry(session_id)
        return entry.info if entry else None

    def get_result(self, session_id: str) -> PresentationSessionResult | None:
        entry = self._entry(session_id)
        return entry.result if entry else None

    def set_result(self, session_id: str, result: PresentationSessionResult) -> None:
        self.entry(session_id).result = result

    def lock(self, session_id: str) -> asyncio.Lock:
        """The per-session lock guarding verification attempts."""
        return self.entry(session_id).lock

    def remove(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def sweep_expired(self) -> int:
        """Drop all expired sessions; returns how many were dropped."""
        now = self.clock()
        expired = [sid for sid, entry in self._entries.items() if entry.session.is_expired(now)]
        for session_id in expired:
            self._entries.pop(session_id, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.get(session_id) is not None
