"""Public session status views."""

from __future__ import annotations

from typing import Any

from vp_verifier.policies import PolicyResult, PolicyTarget
from vp_verifier.sessions import PresentationSessionResult, SessionStore


class SessionInfoReporter:
    """Builds the status view of a presentation session.

    The view never includes the policies configured for the session.
    """

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def describe(self, session_id: str) -> dict[str, Any]:
        """Describe a session.

        Raises:
            SessionNotFound: If the session is unknown or expired.
        """
        session = self.store.require(session_id)
        result = self.store.get_result(session_id)

        return {
            "id": session.id,
            "presentationDefinition": session.presentation_definition.to_dict(),
            "tokenResponse": result.token_response.to_json() if result and result.token_response else None,
            "verificationResult": result.verification_result if result else None,
            "policyResults": self._policy_results(result) if result else None,
        }

    def _policy_results(self, result: PresentationSessionResult) -> dict[str, Any]:
        grouped: dict[tuple[PolicyTarget, str], list[PolicyResult]] = {}
        for policy_result in result.policy_results:
            grouped.setdefault((policy_result.kind, policy_result.target), []).append(policy_result)

        report: dict[str, Any] = {
            "success": bool(result.verification_result),
            "results": [
                {
                    "target": kind.value,
                    "credential": target,
                    "policyResults": [r.to_json() for r in results],
                }
                for (kind, target), results in grouped.items()
            ],
            "time": result.time.isoformat(),
        }
        if result.error is not None:
            report["error"] = result.error
        return report
