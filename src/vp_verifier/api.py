"""HTTP interface of the verifier (FastAPI)."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from vp_verifier import __version__
from vp_verifier.authorization import ResponseMode
from vp_verifier.config import VerifierConfig
from vp_verifier.orchestrator import DEFAULT_AUTHORIZE_BASE_URL, SessionOptions, VerificationOrchestrator
from vp_verifier.policies import MalformedPolicyRequest
from vp_verifier.presentation_definition import InvalidPresentationDefinition
from vp_verifier.reporter import SessionInfoReporter
from vp_verifier.request import InvalidVerificationRequest
from vp_verifier.sessions import MissingVerificationInfo, SessionNotFound


log = logging.getLogger(__name__)

SESSION_NOT_FOUND_MESSAGE = "State parameter doesn't refer to an existing session, or session expired"


def create_app(
    config: VerifierConfig | None = None,
    orchestrator: VerificationOrchestrator | None = None,
) -> FastAPI:
    """Create the verifier application.

    Args:
        config: Service configuration; loaded from the environment if omitted.
        orchestrator: Orchestrator to serve; built from ``config`` if omitted.
    """
    config = config or VerifierConfig.from_env()
    orchestrator = orchestrator or VerificationOrchestrator.from_config(config)
    reporter = SessionInfoReporter(orchestrator.store)

    app = FastAPI(title="OpenID4VP Verifier", version=__version__)
    app.state.orchestrator = orchestrator
    router = APIRouter(prefix="/openid4vc")

    @app.middleware("http")
    async def req_log(request: Request, call_next):
        start = time.time()
        remote = request.client.host if request.client else "-"
        resp = await call_next(request)
        duration_ms = int((time.time() - start) * 1000)
        log.info(
            f"request_complete status={resp.status_code} duration_ms={duration_ms}",
            extra={"route": request.url.path, "remote_addr": remote},
        )
        return resp

    @app.exception_handler(InvalidVerificationRequest)
    @app.exception_handler(MalformedPolicyRequest)
    @app.exception_handler(InvalidPresentationDefinition)
    async def bad_request(request: Request, exc: ValueError):
        return PlainTextResponse(str(exc), status_code=400)

    @app.exception_handler(MissingVerificationInfo)
    async def missing_info(request: Request, exc: MissingVerificationInfo):
        log.error("Invariant violation: %s", exc)
        return PlainTextResponse(str(exc), status_code=500)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @router.post("/verify", response_class=PlainTextResponse)
    async def initialize_session(request: Request):
        """Initialize an OpenID4VP presentation session.

        The returned URL can be rendered as QR code for the holder wallet,
        or called directly on the wallet when its base URL is given.
        """
        headers = request.headers
        try:
            response_mode = ResponseMode.parse(headers.get("responseMode") or ResponseMode.DIRECT_POST.value)
        except ValueError as e:
            return PlainTextResponse(str(e), status_code=400)

        options = SessionOptions(
            authorize_base_url=headers.get("authorizeBaseUrl") or DEFAULT_AUTHORIZE_BASE_URL,
            response_mode=response_mode,
            success_redirect_uri=headers.get("successRedirectUri"),
            error_redirect_uri=headers.get("errorRedirectUri"),
        )

        try:
            body = await request.json()
        except ValueError as e:
            return PlainTextResponse(f"Invalid JSON body: {e}", status_code=400)

        _, url = orchestrator.initialize_from_request(body, options)
        return PlainTextResponse(url)

    @router.post("/verify/{state}", response_class=PlainTextResponse)
    async def verify_submission(state: str, request: Request):
        """Receive the wallet's vp_token response (direct_post) for a session."""
        form = await request.form()
        try:
            outcome = await orchestrator.submit(state, dict(form))
        except SessionNotFound:
            return PlainTextResponse(SESSION_NOT_FOUND_MESSAGE, status_code=400)
        return PlainTextResponse(outcome.message, status_code=200 if outcome.success else 400)

    @router.get("/session/{id}")
    async def session_info(id: str):
        """Current state and result of a presentation session."""
        try:
            return JSONResponse(reporter.describe(id))
        except SessionNotFound:
            return JSONResponse({"detail": f"Invalid id provided (expired?): {id}"}, status_code=404)

    @router.get("/pd/{id}")
    async def presentation_definition(id: str):
        """The presentation definition of a session, as fetched by wallets."""
        session = orchestrator.store.get(id)
        if session is None:
            return Response(status_code=404)
        return JSONResponse(session.presentation_definition.to_dict())

    @router.get("/policy-list")
    async def policy_list():
        return orchestrator.policy_manager.list_policy_descriptions()

    app.include_router(router)
    return app
