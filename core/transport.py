import json
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urljoin

import requests
import urllib3

from core.errors import CertificateError, DecodingError, EncodingError, NetworkError, UpstreamError
from utils.config import ClientConfig
from utils.logger import get_logger

USER_AGENT = "KDT"


class RawResponse:
    """Status and decoded body of a completed HTTP exchange."""

    def __init__(self, status_code: int, data: Any = None, text: str = ""):
        self.status_code = status_code
        self.data = data
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code <= 299

    def field(self, key: str, default: Any = None) -> Any:
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return default


class Transport:
    """Builds authenticated requests against the Kondukto API and decodes replies."""

    def __init__(self, config: ClientConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.logger = get_logger()
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "X-Cookie": config.token,
        })

        if config.insecure:
            self.logger.warning("TLS certificate verification is disabled (--insecure)")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self.session.verify = False

    def url(self, path: str) -> str:
        return urljoin(self.config.host + "/", path.lstrip("/"))

    def request(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None,
                decode: bool = True) -> RawResponse:
        """
        Send a request and return the decoded response.

        Args:
            method: HTTP method
            path: API path, resolved against the configured host
            body: JSON-serializable payload, omitted when None
            params: Query string parameters
            decode: Require a JSON body on success

        Raises:
            EncodingError: body cannot be serialized
            NetworkError: the connection failed
            DecodingError: a successful response did not carry valid JSON
            UpstreamError: the server answered with a non-2xx status
        """
        headers = {}
        data = None
        if body is not None:
            try:
                data = json.dumps(body)
            except (TypeError, ValueError) as e:
                raise EncodingError(f"failed to encode request body: {e}") from e
            headers["Content-Type"] = "application/json"

        url = self.url(path)
        self.logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method,
                url,
                data=data,
                params=_clean_params(params),
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.SSLError as e:
            raise CertificateError(
                f"SSL/TLS certificate error: {e}\n\nThis appears to be a certificate verification issue. "
                "You can bypass SSL verification using the --insecure flag if you trust the server"
            ) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"failed to do request: {e}") from e

        return self._handle(response, decode)

    def _handle(self, response: requests.Response, decode: bool) -> RawResponse:
        text = response.text or ""
        status = response.status_code

        if 200 <= status <= 299:
            if not decode or not text.strip():
                if decode:
                    raise DecodingError(f"failed to parse response: empty body (status {status})")
                return RawResponse(status, None, text)
            try:
                return RawResponse(status, response.json(), text)
            except ValueError as e:
                raise DecodingError(f"failed to parse response: {e}: {text}") from e

        message = _error_message(text)
        if message:
            raise UpstreamError(f"response not OK: response status:{status} error message: {message}", status)
        raise UpstreamError(f"response not OK: response status:{status} {text}".rstrip(), status)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None, decode: bool = True) -> RawResponse:
        return self.request("GET", path, params=params, decode=decode)

    def post(self, path: str, body: Any = None, decode: bool = True) -> RawResponse:
        return self.request("POST", path, body=body, decode=decode)

    def ping(self) -> None:
        """Reach the server without requiring a valid token."""
        self.request("GET", "/core/version", decode=False)

    def close(self) -> None:
        self.session.close()


def _error_message(text: str) -> str:
    try:
        payload = json.loads(text)
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    return payload.get("error") or payload.get("message") or ""


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, Iterable) and not isinstance(value, str):
            value = ",".join(str(v) for v in value)
        cleaned[key] = value
    return cleaned
