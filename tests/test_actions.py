"""Tests for built-in actions."""

import pytest

from relayci.actions import available_actions, get_action, webhook
from relayci.actions.base import Action, require
from relayci.collaborators import CallResult
from relayci.errors import ActionError
from relayci.model import Step

STEP = Step(name="check", uses="lint", cwd="app", timeout=60.0)


class TestRegistry:
    def test_builtin_actions(self):
        assert available_actions() == [
            "artifact-pull",
            "artifact-push",
            "checkout",
            "deploy",
            "lint",
            "notify",
            "test",
            "webhook",
        ]

    def test_version_suffix_is_ignored(self):
        assert get_action("lint@v2").name == "lint"

    def test_unknown_action(self):
        with pytest.raises(ActionError) as exc:
            get_action("teleport")
        assert "unknown action 'teleport'" in exc.value.message

    def test_action_needs_exactly_one_kind(self):
        with pytest.raises(ValueError):
            Action(name="both")


class TestCompiledActions:
    def test_lint(self):
        (step,) = get_action("lint").compile(STEP, {"tool": "ruff", "args": "check --fix", "files": ["src", "tests"]})
        assert step.name == "check"
        assert step.cwd == "app"
        assert step.timeout == 60.0
        assert step.run.splitlines()[-1] == "ruff check --fix src tests"
        assert "command -v ruff" in step.run

    def test_lint_defaults_to_current_directory(self):
        (step,) = get_action("lint").compile(STEP, {"tool": "ruff"})
        assert step.run.splitlines()[-1] == "ruff ."

    def test_lint_requires_tool(self):
        with pytest.raises(ActionError):
            get_action("lint").compile(STEP, {})

    def test_test_with_install(self):
        install, run = get_action("test").compile(STEP, {"framework": "pytest", "args": "-q"})
        assert install.name == "check (install)"
        assert install.run == "python -m pip install -r requirements.txt"
        assert run.name == "check"
        assert run.run.splitlines()[-1] == "pytest -q"

    def test_test_without_install(self):
        steps = get_action("test").compile(STEP, {"framework": "npm", "install": "false"})
        assert [s.name for s in steps] == ["check"]
        assert steps[0].run.splitlines()[-1] == "npm test"

    def test_test_unknown_framework(self):
        with pytest.raises(ActionError) as exc:
            get_action("test").compile(STEP, {"framework": "junit"})
        assert "unknown test framework" in exc.value.message

    def test_checkout(self):
        (step,) = get_action("checkout").compile(
            STEP, {"repository": "https://git.invalid/repo.git", "ref": "v1.2", "path": "src"}
        )
        lines = step.run.splitlines()
        assert lines[0] == "set -e"
        assert "git clone --quiet https://git.invalid/repo.git src" in lines
        assert "git -C src checkout --quiet v1.2" in lines
        assert lines[-1] == "git -C src rev-parse HEAD"


class TestCallActions:
    @pytest.fixture
    def sent(self, monkeypatch):
        calls = []

        def fake_http_call(url, payload=None, *, method="POST", headers=None, timeout=30.0):
            calls.append({"url": url, "payload": payload, "method": method, "headers": headers, "timeout": timeout})
            return CallResult(ok=True, detail="accepted", status=202)

        monkeypatch.setattr(webhook, "http_call", fake_http_call)
        return calls

    def test_webhook(self, sent):
        result = get_action("webhook").call(
            {"url": "https://hooks.invalid/x", "payload": {"a": 1}, "headers": {"X-Token": 7}}, 5.0
        )
        assert result.ok
        assert sent == [
            {
                "url": "https://hooks.invalid/x",
                "payload": {"action": "webhook", "a": 1},
                "method": "POST",
                "headers": {"X-Token": "7"},
                "timeout": 5.0,
            }
        ]

    def test_deploy(self, sent):
        get_action("deploy").call({"url": "https://deploy.invalid", "environment": "prod", "version": "1.0"}, 10.0)
        assert sent[0]["payload"] == {"action": "deploy", "environment": "prod", "version": "1.0", "artifact": None}

    @pytest.mark.parametrize(
        "name, params",
        [
            ("deploy", {"url": "https://deploy.invalid"}),
            ("artifact-push", {"url": "https://registry.invalid"}),
            ("artifact-pull", {"url": "https://registry.invalid"}),
            ("notify", {"url": "https://alerts.invalid"}),
            ("webhook", {}),
        ],
    )
    def test_missing_required_parameter(self, sent, name, params):
        with pytest.raises(ActionError) as exc:
            get_action(name).call(params, 1.0)
        assert "requires 'with." in exc.value.message
        assert sent == []

    def test_payload_must_be_mapping(self, sent):
        with pytest.raises(ActionError):
            get_action("webhook").call({"url": "https://hooks.invalid", "payload": [1, 2]}, 1.0)

    def test_require(self):
        assert require({"k": "v"}, "k", "a") == "v"
        with pytest.raises(ActionError):
            require({"k": ""}, "k", "a")
