# collaborators.py
"""
External collaborators: deployment APIs, artifact registries and monitoring.

The engine never implements these systems; it makes one opaque HTTP call and
gets back a success/failure CallResult.
"""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0


@dataclass(frozen=True)
class CallResult:
    ok: bool
    detail: str = ""
    status: Optional[int] = None


ExternalCall = Callable[[Dict[str, Any]], CallResult]


def http_call(
    url: str,
    payload: Optional[Dict[str, Any]] = None,
    *,
    method: str = "POST",
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_CALL_TIMEOUT,
) -> CallResult:
    """
    Send one JSON request.

    Raises:
        TimeoutError: the collaborator did not answer within `timeout`.
    """
    req_headers = {"Content-Type": "application/json"}
    if headers:
        req_headers.update(headers)

    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")

    req = urllib.request.Request(url, data=data, headers=req_headers, method=method.upper())
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            body = response.read().decode("utf-8", errors="replace")
            return CallResult(ok=True, detail=body[-4000:], status=response.status)
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
        return CallResult(ok=False, detail=f"HTTP {e.code} {e.reason}. {error_body}".strip(), status=e.code)
    except urllib.error.URLError as e:
        if isinstance(e.reason, TimeoutError):
            raise e.reason
        return CallResult(ok=False, detail=f"Network error: {e.reason}")


class Notifier:
    """
    Monitoring/alerting emission to webhook URLs.

    Delivery problems are logged and reported in the returned results; they
    never change the outcome of a run.
    """

    def __init__(self, urls: Iterable[str], timeout: float = 10.0, call: Callable[..., CallResult] = http_call):
        self.urls = list(urls)
        self.timeout = timeout
        self._call = call

    def emit(self, event: str, payload: Dict[str, Any]) -> List[CallResult]:
        results = []
        body = {"event": event, **payload}
        for url in self.urls:
            try:
                result = self._call(url, body, timeout=self.timeout)
            except TimeoutError:
                result = CallResult(ok=False, detail="timed out")
            if not result.ok:
                logger.warning("notification %s to %s failed: %s", event, url, result.detail)
            results.append(result)
        return results
