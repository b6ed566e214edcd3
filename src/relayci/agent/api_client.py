# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urljoin

from .models import CancelResponse, ExecutionRequest, ExecutionResponse

# extra time on top of the step timeout for the agent to kill and answer
RESPONSE_GRACE = 30.0


class APIError(Exception):
    """Raised when agent requests fail."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AgentClient:
    """HTTP client for a relayci remote agent."""

    def __init__(self, base_url: str, *, connect_timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """
        Make an HTTP request to the agent and return the parsed JSON body.

        Raises:
            APIError: HTTP error status, network error or invalid JSON
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        req_data = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url,
            data=req_data,
            headers={"Content-Type": "application/json"},
            method=method,
        )

        try:
            with urllib.request.urlopen(req, timeout=timeout or self.connect_timeout) as response:
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}", status=e.code)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except TimeoutError as e:
            raise APIError(f"Network error: {e}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def execute(self, request: ExecutionRequest) -> ExecutionResponse:
        """Blocking: returns once the agent finished, timed out or cancelled the step."""
        wait = (request.timeout + RESPONSE_GRACE) if request.timeout else None
        data = self._request("POST", "/executions", data=request.model_dump(), timeout=wait or 24 * 3600)
        return ExecutionResponse.model_validate(data)

    def cancel(self, execution_id: str) -> CancelResponse:
        data = self._request("POST", f"/executions/{execution_id}/cancel")
        return CancelResponse.model_validate(data)
