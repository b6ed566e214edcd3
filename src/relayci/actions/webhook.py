# actions/webhook.py
"""
Actions that talk to external collaborators over HTTP.

They run in the worker (not on the runner): deployment APIs, artifact
registries and monitoring endpoints are reached with one JSON request and
the step passes or fails on the collaborator's answer.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from ..collaborators import CallResult, http_call
from ..errors import ActionError
from .base import Action, require


def _headers(params: Dict[str, Any]) -> Optional[Dict[str, str]]:
    headers = params.get("headers")
    if headers is None:
        return None
    if not isinstance(headers, dict):
        raise ActionError(message="'with.headers' must be a mapping")
    return {str(k): str(v) for k, v in headers.items()}


def _send(action: str, params: Dict[str, Any], payload: Dict[str, Any], timeout: float) -> CallResult:
    url = require(params, "url", action)
    method = str(params.get("method") or "POST")
    return http_call(str(url), {"action": action, **payload}, method=method, headers=_headers(params), timeout=timeout)


def call_webhook(params: Dict[str, Any], timeout: float) -> CallResult:
    payload = params.get("payload") or {}
    if not isinstance(payload, dict):
        raise ActionError(message="'with.payload' must be a mapping")
    return _send("webhook", params, payload, timeout)


def call_deploy(params: Dict[str, Any], timeout: float) -> CallResult:
    environment = require(params, "environment", "deploy")
    payload = {
        "environment": environment,
        "version": params.get("version"),
        "artifact": params.get("artifact"),
    }
    return _send("deploy", params, payload, timeout)


def call_artifact_push(params: Dict[str, Any], timeout: float) -> CallResult:
    name = require(params, "name", "artifact-push")
    payload = {"name": name, "path": params.get("path"), "version": params.get("version")}
    return _send("artifact-push", params, payload, timeout)


def call_artifact_pull(params: Dict[str, Any], timeout: float) -> CallResult:
    name = require(params, "name", "artifact-pull")
    payload = {"name": name, "version": params.get("version"), "path": params.get("path")}
    return _send("artifact-pull", params, payload, timeout)


def call_notify(params: Dict[str, Any], timeout: float) -> CallResult:
    message = require(params, "message", "notify")
    payload = {"message": message, "level": params.get("level", "info")}
    return _send("notify", params, payload, timeout)


ACTIONS = [
    Action(name="webhook", call=call_webhook, description="POST a JSON payload to a URL"),
    Action(name="deploy", call=call_deploy, description="Ask a deployment API to roll out a version"),
    Action(name="artifact-push", call=call_artifact_push, description="Register an artifact with a registry"),
    Action(name="artifact-pull", call=call_artifact_pull, description="Fetch an artifact from a registry"),
    Action(name="notify", call=call_notify, description="Send a message to a monitoring/alerting endpoint"),
]
