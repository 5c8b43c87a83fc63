from typing import Any, Optional

import requests

from bibscrip.events import log_event


class ProxyError(Exception):
    def __init__(self, status_code: int, message: str, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


def _safe_json(res: requests.Response) -> Any:
    try:
        return res.json()
    except ValueError:
        return res.text or None


def forward(
    method: str,
    url: str,
    service: str,
    timeout: float,
    params: Optional[dict] = None,
    json_body: Any = None,
) -> Any:
    """Send one request to a backend and return its JSON body.

    Failures become ``ProxyError``: backend 4xx/5xx keep their status and
    message, connection failures map to 503, timeouts to 504, anything else
    to 500.
    """
    try:
        res = requests.request(method, url, params=params, json=json_body, timeout=timeout)
    except requests.Timeout as exc:
        log_event("proxy_error", {"service": service, "kind": "timeout"})
        raise ProxyError(504, f"Request to {service} timed out", details=str(exc)) from exc
    except requests.ConnectionError as exc:
        log_event("proxy_error", {"service": service, "kind": "connection"})
        raise ProxyError(503, f"Failed to connect to {service}", details=str(exc)) from exc
    except requests.RequestException as exc:
        log_event("proxy_error", {"service": service, "kind": "request"})
        raise ProxyError(500, f"Failed to reach {service}", details=str(exc)) from exc

    if res.status_code >= 400:
        body = _safe_json(res)
        message = body.get("error") if isinstance(body, dict) else None
        log_event("proxy_error", {"service": service, "kind": "upstream", "status": res.status_code})
        raise ProxyError(
            res.status_code,
            message if isinstance(message, str) and message else f"{service} error",
            details=body,
        )
    try:
        return res.json()
    except ValueError as exc:
        log_event("proxy_error", {"service": service, "kind": "invalid_json"})
        raise ProxyError(500, f"Invalid response from {service}", details=res.text) from exc


def require(value: Any, message: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ProxyError(400, message)
