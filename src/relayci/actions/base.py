# actions/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..collaborators import CallResult
from ..errors import ActionError
from ..model import Step

Compiler = Callable[[Step, Dict[str, Any]], List[Step]]
Caller = Callable[[Dict[str, Any], float], CallResult]


@dataclass(frozen=True)
class Action:
    """
    A reusable step kind.

    compile: turns the `uses:` step into shell steps run on the job's runner
    call:    performs an external call from the worker, returns CallResult
    """
    name: str
    compile: Optional[Compiler] = None
    call: Optional[Caller] = None
    description: str = ""

    def __post_init__(self) -> None:
        if (self.compile is None) == (self.call is None):
            raise ValueError(f"action {self.name!r} needs exactly one of compile or call")


def require(params: Dict[str, Any], key: str, action: str) -> Any:
    value = params.get(key)
    if value is None or value == "":
        raise ActionError(message=f"action {action!r} requires 'with.{key}'")
    return value
