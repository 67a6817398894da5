"""Tests for policy parsing, the registry and the executor."""

import asyncio

import pytest

from vp_verifier.policies import (
    MalformedPolicyRequest,
    Policy,
    PolicyExecutor,
    PolicyJob,
    PolicyManager,
    PolicyRequest,
    PolicyTarget,
    PolicyViolation,
    VerificationContext,
    parse_policy_request,
    parse_policy_requests,
)


class StaticPolicy(Policy):
    """Test policy that passes or fails as configured."""

    def __init__(self, name, succeed=True, delay=0.0, targets=frozenset(PolicyTarget)):
        self.name = name
        self.description = f"{name} test policy"
        self.succeed = succeed
        self.delay = delay
        self.targets = targets
        self.calls = []

    async def verify(self, data, args, context):
        self.calls.append((data, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.succeed:
            raise PolicyViolation(f"{self.name} failed", detail={"data": data})
        return {"checked": data}


class RaisingPolicy(Policy):
    name = "raising"
    description = "Raises an unexpected error"

    async def verify(self, data, args, context):
        raise RuntimeError("boom")


@pytest.fixture
def manager():
    return PolicyManager([
        StaticPolicy("signature"),
        StaticPolicy("expired"),
        StaticPolicy("holder-binding", targets=frozenset({PolicyTarget.PRESENTATION})),
    ])


@pytest.fixture
def context():
    return VerificationContext(session_id="session-1")


class TestPolicyRequestParser:
    """Tests for parsing JSON policy specs."""

    def test_bare_strings_have_no_arguments_and_keep_order(self, manager):
        """Bare names parse to requests without arguments, in input order."""
        requests = parse_policy_requests(["expired", "signature", "expired"], manager)

        assert [r.name for r in requests] == ["expired", "signature", "expired"]
        assert all(r.args is None for r in requests)

    def test_object_with_policy_and_args(self, manager):
        """Objects carry the policy name and its arguments."""
        request = parse_policy_request({"policy": "expired", "args": {"leeway": 5}}, manager)

        assert request.name == "expired"
        assert request.args == {"leeway": 5}

    def test_object_with_name_and_arguments(self, manager):
        """`name`/`arguments` are accepted as synonyms."""
        request = parse_policy_request({"name": "signature", "arguments": [1, 2]}, manager)

        assert request.name == "signature"
        assert request.args == [1, 2]

    def test_unknown_policy(self, manager):
        """Unknown policy names are rejected."""
        with pytest.raises(MalformedPolicyRequest, match="Unknown policy"):
            parse_policy_requests(["signature", "does-not-exist"], manager)

    @pytest.mark.parametrize("spec", [42, None, ["signature"], {"args": 1}, {"policy": 7}])
    def test_invalid_shapes(self, manager, spec):
        """Anything but a string or a named object is malformed."""
        with pytest.raises(MalformedPolicyRequest):
            parse_policy_request(spec, manager)

    def test_array_required(self, manager):
        """The list of specs must be a JSON array."""
        with pytest.raises(MalformedPolicyRequest):
            parse_policy_requests("signature", manager)

    def test_target_mismatch(self, manager):
        """Presentation-only policies cannot be requested for credentials."""
        with pytest.raises(MalformedPolicyRequest, match="cannot be applied"):
            parse_policy_request("holder-binding", manager, PolicyTarget.CREDENTIAL)

        request = parse_policy_request("holder-binding", manager, PolicyTarget.PRESENTATION)
        assert request.name == "holder-binding"

    def test_to_json(self, manager):
        """Requests serialize back to their JSON spec."""
        assert parse_policy_request("signature", manager).to_json() == "signature"
        assert parse_policy_request({"policy": "expired", "args": 3}, manager).to_json() == {
            "policy": "expired",
            "args": 3,
        }


class TestPolicyManager:
    """Tests for the policy registry."""

    def test_duplicate_registration(self, manager):
        """A name can only be registered once."""
        with pytest.raises(ValueError, match="already registered"):
            manager.register(StaticPolicy("signature"))

    def test_get_unknown(self, manager):
        """Looking up an unknown policy raises KeyError."""
        with pytest.raises(KeyError):
            manager.get("nope")

    def test_list_policy_descriptions(self, manager):
        """Descriptions are listed sorted by name."""
        descriptions = manager.list_policy_descriptions()

        assert list(descriptions) == ["expired", "holder-binding", "signature"]
        assert descriptions["signature"] == "signature test policy"

    def test_default_registry(self):
        """The default registry holds the built-in policies."""
        manager = PolicyManager.default()

        for name in ("signature", "expired", "not-before", "allowed-issuer", "holder-binding",
                     "minimum-credentials", "maximum-credentials", "presentation-definition", "webhook"):
            assert name in manager

    def test_default_registries_are_independent(self):
        """Each call creates a fresh registry."""
        first = PolicyManager.default()
        first.register(StaticPolicy("custom"))

        assert "custom" not in PolicyManager.default()


class TestPolicyExecutor:
    """Tests for concurrent policy execution."""

    @pytest.mark.asyncio
    async def test_all_policies_run_despite_failures(self, context):
        """A failing policy does not short-circuit the others."""
        failing = StaticPolicy("failing", succeed=False)
        passing = StaticPolicy("passing")
        jobs = [
            PolicyJob(PolicyRequest(failing), "vc-1", "vc-1"),
            PolicyJob(PolicyRequest(passing), "vc-1", "vc-1"),
            PolicyJob(PolicyRequest(RaisingPolicy()), "vp", "presentation"),
        ]

        results = await PolicyExecutor(timeout=5).run_all(jobs, context)

        assert [r.policy for r in results] == ["failing", "passing", "raising"]
        assert [r.success for r in results] == [False, True, False]
        assert results[0].error == "failing failed"
        assert results[0].detail == {"data": "vc-1"}
        assert results[1].detail == {"checked": "vc-1"}
        assert results[2].error == "RuntimeError: boom"
        assert len(passing.calls) == 1

    @pytest.mark.asyncio
    async def test_results_keep_job_order(self, context):
        """Results follow job order, not completion order."""
        slow = StaticPolicy("slow", delay=0.05)
        fast = StaticPolicy("fast")
        jobs = [PolicyJob(PolicyRequest(slow), 1, "a"), PolicyJob(PolicyRequest(fast), 2, "b")]

        results = await PolicyExecutor(timeout=5).run_all(jobs, context)

        assert [r.target for r in results] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_timeout_fails_pending_policies(self, context):
        """Policies still running at the timeout are recorded as failed."""
        slow = StaticPolicy("slow", delay=10)
        fast = StaticPolicy("fast")
        jobs = [PolicyJob(PolicyRequest(slow), 1, "a"), PolicyJob(PolicyRequest(fast), 2, "b")]

        results = await PolicyExecutor(timeout=0.05).run_all(jobs, context)

        assert results[0].success is False
        assert results[0].error == "timeout"
        assert results[1].success is True

    @pytest.mark.asyncio
    async def test_no_jobs(self, context):
        """An empty job list yields no results."""
        assert await PolicyExecutor().run_all([], context) == []

    def test_result_json_hides_arguments(self):
        """Result JSON names the policy but not its configured arguments."""
        executor_result = asyncio.run(
            PolicyExecutor().run(
                PolicyJob(PolicyRequest(StaticPolicy("allowed"), args=["did:example:secret"]), "x", "vc"),
                VerificationContext(session_id="s"),
            )
        )

        data = executor_result.to_json()
        assert data["policy"] == "allowed"
        assert data["is_success"] is True
        assert "args" not in data
        assert "did:example:secret" not in str(data)
