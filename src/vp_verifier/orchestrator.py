"""
OpenID4VP verification orchestrator.

Drives a presentation exchange:
1. Initialize a session for a presentation definition and hand out the
   authorization URL for the wallet
2. Verify the wallet's vp_token response against the session's policies
3. Record the result and decide what to answer the wallet
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from vp_verifier.authorization import AuthorizationRequest, ResponseMode
from vp_verifier.config import VerifierConfig
from vp_verifier.did_resolver import DIDResolver
from vp_verifier.policies import (
    PolicyExecutor,
    PolicyJob,
    PolicyManager,
    PolicyRequest,
    PolicyTarget,
    VerificationContext,
    parse_policy_request,
)
from vp_verifier.presentation_definition import PresentationDefinition, resolve_presentation_definition
from vp_verifier.request import DEFAULT_POLICY, VerificationRequest
from vp_verifier.sessions import (
    MissingVerificationInfo,
    PresentationSession,
    PresentationSessionResult,
    SessionEntry,
    SessionStore,
    SessionVerificationInfo,
)
from vp_verifier.submission import TokenDecodeFailure, TokenResponse


log = logging.getLogger(__name__)

DEFAULT_AUTHORIZE_BASE_URL = "openid4vp://authorize"
PRESENTATION_TARGET = "presentation"


@dataclass(frozen=True)
class SessionOptions:
    """Caller options for a new session (sent as request headers)."""

    authorize_base_url: str = DEFAULT_AUTHORIZE_BASE_URL
    response_mode: ResponseMode = ResponseMode.DIRECT_POST
    success_redirect_uri: str | None = None
    error_redirect_uri: str | None = None


@dataclass(frozen=True)
class SubmissionOutcome:
    """What to answer the wallet after a submission."""

    success: bool
    message: str
    result: PresentationSessionResult


class VerificationOrchestrator:
    """Creates presentation sessions and verifies wallet submissions."""

    def __init__(
        self,
        policy_manager: PolicyManager,
        store: SessionStore | None = None,
        executor: PolicyExecutor | None = None,
        config: VerifierConfig | None = None,
    ) -> None:
        self.config = config or VerifierConfig()
        self.policy_manager = policy_manager
        self.store = store or SessionStore(ttl_seconds=self.config.session_ttl_seconds)
        self.executor = executor or PolicyExecutor(timeout=self.config.policy_timeout_seconds)

    @classmethod
    def from_config(cls, config: VerifierConfig) -> VerificationOrchestrator:
        """Build an orchestrator with the built-in policy registry."""
        resolver = DIDResolver(timeout=config.http_timeout_seconds, verify_ssl=config.verify_ssl)
        manager = PolicyManager.default(
            did_resolver=resolver,
            http_timeout=config.http_timeout_seconds,
            verify_ssl=config.verify_ssl,
        )
        return cls(manager, config=config)

    def _default_policies(self, target: PolicyTarget) -> list[PolicyRequest]:
        return [parse_policy_request(DEFAULT_POLICY, self.policy_manager, target)]

    def initialize_session(
        self,
        presentation_definition: PresentationDefinition,
        options: SessionOptions | None = None,
        vp_policies: Sequence[PolicyRequest] | None = None,
        vc_policies: Sequence[PolicyRequest] | None = None,
        specific_policies: Mapping[str, Sequence[PolicyRequest]] | None = None,
    ) -> PresentationSession:
        """Create and store a presentation session.

        Missing ``vp_policies``/``vc_policies`` default to the signature
        policy. The session and its verification information are stored
        together.
        """
        options = options or SessionOptions()
        session_id = str(uuid.uuid4())

        authorization_request = AuthorizationRequest.for_session(
            session_id,
            presentation_definition,
            options.response_mode,
            base_url=self.config.base_url,
            client_id=self.config.effective_client_id,
            inline_definition=self.config.inline_presentation_definition,
        )
        created_at, expires_at = self.store.new_expiry()
        session = PresentationSession(
            id=session_id,
            presentation_definition=presentation_definition,
            authorization_request=authorization_request,
            response_mode=options.response_mode,
            created_at=created_at,
            expires_at=expires_at,
        )
        info = SessionVerificationInfo(
            vp_policies=tuple(vp_policies if vp_policies is not None else self._default_policies(PolicyTarget.PRESENTATION)),
            vc_policies=tuple(vc_policies if vc_policies is not None else self._default_policies(PolicyTarget.CREDENTIAL)),
            specific_policies={k: tuple(v) for k, v in (specific_policies or {}).items()},
            success_redirect_uri=options.success_redirect_uri,
            error_redirect_uri=options.error_redirect_uri,
        )
        self.store.put(session, info)

        log.info(
            "Initialized presentation session %s (%s)", session_id, options.response_mode.value,
            extra={"session_id": session_id},
        )
        log.debug(
            "Session %s policies: vp=%s vc=%s specific=%s", session_id,
            [p.name for p in info.vp_policies],
            [p.name for p in info.vc_policies],
            {k: [p.name for p in v] for k, v in info.specific_policies.items()},
            extra={"session_id": session_id},
        )
        return session

    def initialize_from_request(
        self,
        body: Any,
        options: SessionOptions | None = None,
    ) -> tuple[PresentationSession, str]:
        """Parse a session-init request body and start a session.

        Returns:
            The session and the authorization URL to hand to the wallet.

        Raises:
            InvalidVerificationRequest: If the body is malformed.
            MalformedPolicyRequest: If a policy spec is invalid.
            InvalidPresentationDefinition: If an explicit definition is malformed.
        """
        options = options or SessionOptions()
        request = VerificationRequest.from_json(body, self.policy_manager)
        definition = resolve_presentation_definition(request.presentation_definition, request.requested_types)

        session = self.initialize_session(
            definition,
            options,
            vp_policies=request.vp_policies,
            vc_policies=request.vc_policies,
            specific_policies=request.specific_policies,
        )
        return session, session.authorization_url(options.authorize_base_url)

    def _checkout(self, session_id: str) -> SessionEntry:
        entry = self.store.entry(session_id)
        if entry.info is None:
            log.error("No verification information for session %s", session_id, extra={"session_id": session_id})
            raise MissingVerificationInfo(f"No session verification information found for session id {session_id}")
        return entry

    async def verify_submission(
        self,
        session_id: str,
        parameters: Mapping[str, Any],
    ) -> PresentationSessionResult:
        """Verify a wallet response for a session and record the result.

        All applicable policies run concurrently; a failing policy never
        stops the others. A response that cannot be decoded yields a failed
        result without policy outcomes.

        Raises:
            SessionNotFound: If the session is unknown or expired.
            MissingVerificationInfo: If the session has no verification info.
        """
        return await self._verify(self._checkout(session_id), parameters)

    async def _verify(self, entry: SessionEntry, parameters: Mapping[str, Any]) -> PresentationSessionResult:
        # Written through the held entry; expiry meanwhile only hides the session.
        session, info = entry.session, entry.info
        session_id = session.id

        async with entry.lock:
            if entry.result is not None:
                log.warning(
                    "Session %s was already verified, overwriting previous result", session_id,
                    extra={"session_id": session_id},
                )
            log.info("Verifying submission for session %s", session_id, extra={"session_id": session_id})

            try:
                token_response = TokenResponse.from_http_parameters(parameters)
                presentation = token_response.decode()
            except TokenDecodeFailure as e:
                log.info("Could not decode wallet response for %s: %s", session_id, e, extra={"session_id": session_id})
                entry.result = PresentationSessionResult(verification_result=False, error=str(e))
                return entry.result

            context = VerificationContext(
                session_id=session_id,
                presentation_definition=session.presentation_definition,
                presentation=presentation,
                submission=token_response.presentation_submission,
            )
            jobs = [
                PolicyJob(request, presentation, PRESENTATION_TARGET, PolicyTarget.PRESENTATION)
                for request in info.vp_policies
            ]
            for credential in presentation.credentials:
                jobs.extend(
                    PolicyJob(request, credential, credential.id, PolicyTarget.CREDENTIAL)
                    for request in info.credential_policies(credential.type)
                )

            policy_results = await self.executor.run_all(jobs, context)
            result = PresentationSessionResult(
                verification_result=all(r.success for r in policy_results),
                policy_results=policy_results,
                token_response=token_response,
            )
            for failed in result.failed_results:
                log.info(
                    "Policy %s failed for %s: %s", failed.policy, failed.target, failed.error,
                    extra={"session_id": session_id},
                )
            entry.result = result
            return result

    async def submit(self, session_id: str, parameters: Mapping[str, Any]) -> SubmissionOutcome:
        """Verify a submission and decide the answer for the wallet.

        On success the success redirect (``$id`` replaced by the session id)
        or an empty string is returned. On failure the error redirect, or a
        summary naming every failed policy.
        """
        entry = self._checkout(session_id)
        result = await self._verify(entry, parameters)
        info = entry.info

        if result.verification_result:
            redirect = info.success_redirect_uri
            return SubmissionOutcome(True, redirect.replace("$id", session_id) if redirect else "", result)

        if result.error is not None:
            return SubmissionOutcome(False, "Verification failed", result)
        if info.error_redirect_uri:
            return SubmissionOutcome(False, info.error_redirect_uri.replace("$id", session_id), result)
        failed = ", ".join(r.policy for r in result.failed_results)
        return SubmissionOutcome(False, f"Verification policies did not succeed: {failed}", result)
