"""Tests for the HTTP interface."""

import inspect
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from vp_verifier.api import SESSION_NOT_FOUND_MESSAGE, create_app


@pytest.fixture
def client(config, orchestrator):
    return TestClient(create_app(config, orchestrator=orchestrator))


def start_session(client, body, **headers):
    response = client.post("/openid4vc/verify", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.text, parse_qs(urlsplit(response.text).query)["state"][0]


class TestInitializeEndpoint:
    """Tests for POST /openid4vc/verify."""

    def test_returns_authorization_url(self, client):
        """The answer is the wallet URL for the new session."""
        url, state = start_session(client, {"request_credentials": ["VerifiableId"]})

        assert url.startswith("openid4vp://authorize?")
        assert f"response_uri=https%3A%2F%2Fverifier.example.com%2Fopenid4vc%2Fverify%2F{state}" in url

    def test_authorize_base_url_header(self, client):
        """authorizeBaseUrl replaces the default wallet URL."""
        url, _ = start_session(
            client, {"request_credentials": ["VerifiableId"]}, authorizeBaseUrl="https://wallet.example/auth"
        )

        assert url.startswith("https://wallet.example/auth?")

    def test_invalid_response_mode(self, client):
        """Unknown response modes are client errors."""
        response = client.post(
            "/openid4vc/verify", json={"request_credentials": ["VerifiableId"]}, headers={"responseMode": "smoke_signal"}
        )

        assert response.status_code == 400
        assert "smoke_signal" in response.text

    @pytest.mark.parametrize("body, message", [
        ({"request_credentials": []}, "request_credentials"),
        ({"request_credentials": [{"policies": ["signature"]}]}, "No `credential` name supplied"),
        ({"request_credentials": [{"credential": "VerifiableId"}]}, "No `policies` supplied"),
        ({"vc_policies": ["unknown"], "request_credentials": ["VerifiableId"]}, "Unknown policy: unknown"),
        ({"request_credentials": ["VerifiableId"], "presentation_definition": {"id": "x"}}, "input_descriptors"),
    ])
    def test_invalid_requests(self, client, body, message):
        """Malformed session-init requests answer 400 with an explanation."""
        response = client.post("/openid4vc/verify", json=body)

        assert response.status_code == 400
        assert message in response.text

    @pytest.mark.parametrize("content", [b"{nope", b"{\"request_credentials\": [\"\xff\"]}"])
    def test_invalid_json(self, client, content):
        """Bodies that are not JSON, or not UTF-8, answer 400."""
        response = client.post(
            "/openid4vc/verify", content=content, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400


class TestSubmissionEndpoint:
    """Tests for POST /openid4vc/verify/{state}."""

    def test_valid_submission(self, client, make_credential, make_response):
        """A presentation passing the default policies answers 200 with an empty body."""
        _, state = start_session(client, {"request_credentials": ["VerifiableId"]})

        response = client.post(
            f"/openid4vc/verify/{state}", data=make_response(("VerifiableId", make_credential()))
        )

        assert response.status_code == 200
        assert response.text == ""

    def test_valid_submission_with_redirect(self, client, make_credential, make_response):
        """The success redirect is answered with the session id filled in."""
        _, state = start_session(
            client, {"request_credentials": ["VerifiableId"]}, successRedirectUri="https://shop.example/ok/$id"
        )

        response = client.post(
            f"/openid4vc/verify/{state}", data=make_response(("VerifiableId", make_credential()))
        )

        assert response.status_code == 200
        assert response.text == f"https://shop.example/ok/{state}"

    def test_failed_policy(self, client, make_credential, make_response):
        """A failing policy answers 400 naming that policy."""
        _, state = start_session(
            client,
            {"request_credentials": [{"credential": "VerifiableId", "policies": ["signature", "expired"]}]},
        )

        response = client.post(
            f"/openid4vc/verify/{state}",
            data=make_response(("VerifiableId", make_credential(expires_in=-60))),
        )

        assert response.status_code == 400
        assert response.text == "Verification policies did not succeed: expired"

    def test_unknown_session(self, client, make_credential, make_response):
        """Submissions for sessions that never existed answer 400."""
        response = client.post(
            "/openid4vc/verify/never-created", data=make_response(("VerifiableId", make_credential()))
        )

        assert response.status_code == 400
        assert response.text == SESSION_NOT_FOUND_MESSAGE
        assert "doesn't refer to an existing session, or session expired" in response.text

    def test_undecodable_submission(self, client):
        """Garbage wallet responses answer 400."""
        _, state = start_session(client, {"request_credentials": ["VerifiableId"]})

        response = client.post(f"/openid4vc/verify/{state}", data={"vp_token": "garbage"})

        assert response.status_code == 400
        assert response.text == "Verification failed"


class TestQueryEndpoints:
    """Tests for session status, definition fetch and policy listing."""

    def test_session_info(self, client, make_credential, make_response):
        """The status view reflects the verification result."""
        _, state = start_session(client, {"request_credentials": ["VerifiableId"]})
        pending = client.get(f"/openid4vc/session/{state}").json()

        client.post(f"/openid4vc/verify/{state}", data=make_response(("VerifiableId", make_credential())))
        done = client.get(f"/openid4vc/session/{state}").json()

        assert pending["id"] == state
        assert pending["verificationResult"] is None
        assert done["verificationResult"] is True
        assert done["policyResults"]["success"] is True
        assert done["presentationDefinition"] == pending["presentationDefinition"]

    def test_unknown_session_info(self, client):
        """Unknown sessions answer 404."""
        response = client.get("/openid4vc/session/nope")

        assert response.status_code == 404
        assert "nope" in response.json()["detail"]

    def test_presentation_definition(self, client):
        """Wallets fetch the stored definition by session id."""
        _, state = start_session(client, {"request_credentials": ["VerifiableId", "ProofOfResidence"]})

        response = client.get(f"/openid4vc/pd/{state}")

        assert response.status_code == 200
        assert [d["id"] for d in response.json()["input_descriptors"]] == ["VerifiableId", "ProofOfResidence"]
        assert client.get("/openid4vc/pd/nope").status_code == 404

    def test_policy_list(self, client):
        """The registered policies are listed with their descriptions."""
        policies = client.get("/openid4vc/policy-list").json()

        assert "signature" in policies
        assert policies["expired"]

    def test_healthz(self, client):
        """Health check."""
        assert client.get("/healthz").json() == {"ok": True}

    def test_handlers_run_on_the_event_loop(self, config, orchestrator):
        """Handlers touching the session store are coroutines, never run in the threadpool."""
        app = create_app(config, orchestrator=orchestrator)

        endpoints = {route.path: route.endpoint for route in app.routes if hasattr(route, "endpoint")}

        for path in ("/openid4vc/session/{id}", "/openid4vc/pd/{id}", "/openid4vc/verify", "/openid4vc/verify/{state}"):
            assert inspect.iscoroutinefunction(endpoints[path]), path
