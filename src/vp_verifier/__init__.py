"""
VP Verifier - OpenID4VP verifiable-presentation verification service.

Supports:
- Presentation sessions with DIF presentation definitions
- Authorization requests for the vp_token response type (direct_post)
- Pluggable policies, per presentation, per credential and per credential type
- JWT credentials and presentations signed with ES256 or EdDSA (did:jwk, did:web)
"""

from vp_verifier.orchestrator import (
    SessionOptions,
    SubmissionOutcome,
    VerificationOrchestrator,
)
from vp_verifier.policies import (
    MalformedPolicyRequest,
    Policy,
    PolicyManager,
    PolicyRequest,
    PolicyResult,
    parse_policy_requests,
)
from vp_verifier.sessions import (
    MissingVerificationInfo,
    PresentationSession,
    PresentationSessionResult,
    SessionNotFound,
    SessionStore,
)
from vp_verifier.reporter import SessionInfoReporter

__version__ = "0.1.0"

__all__ = [
    "VerificationOrchestrator",
    "SessionOptions",
    "SubmissionOutcome",
    "Policy",
    "PolicyManager",
    "PolicyRequest",
    "PolicyResult",
    "MalformedPolicyRequest",
    "parse_policy_requests",
    "PresentationSession",
    "PresentationSessionResult",
    "SessionStore",
    "SessionNotFound",
    "MissingVerificationInfo",
    "SessionInfoReporter",
]
