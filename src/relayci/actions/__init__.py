# actions/__init__.py
"""
Reusable step kinds referenced with `uses:`.

An action either compiles into plain shell steps that run on the job's runner
(lint, test, checkout), or performs an external collaborator call from the
worker (webhook, deploy, artifact-push, artifact-pull, notify).
"""
from __future__ import annotations

from typing import Dict, List

from ..errors import ActionError
from . import checkout, lint, test, webhook
from .base import Action, require

_REGISTRY: Dict[str, Action] = {}


def register_action(action: Action) -> Action:
    _REGISTRY[action.name] = action
    return action


def get_action(name: str) -> Action:
    # `uses: lint@v1` style version suffixes are accepted and ignored
    key = name.split("@", 1)[0]
    action = _REGISTRY.get(key)
    if action is None:
        raise ActionError(message=f"unknown action {name!r}; available: {available_actions()}")
    return action


def available_actions() -> List[str]:
    return sorted(_REGISTRY)


for _module in (checkout, lint, test, webhook):
    for _action in _module.ACTIONS:
        register_action(_action)

__all__ = ["Action", "register_action", "get_action", "available_actions", "require"]
