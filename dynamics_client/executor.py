"""
Single-request execution against the Dynamics data API ({resource}/data).

GET calls first ask {base}/{path}/$count for the total number of records and wrap the page in a
RequestEnvelope. A 401 triggers re-authentication; the rejected response is still evaluated
(and surfaces as ApiError) unless retry_on_unauthorized is set.
"""
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote

import httpx

from dynamics_client.auth import TokenManager
from dynamics_client.config import SUPPORTED_METHODS, VALID_HTTP_STATUS_CODES
from dynamics_client.errors import ApiError

logger = logging.getLogger(__name__)


@dataclass
class RequestEnvelope:
    """Normalized GET result: data is the page, total comes from $count, current is len(data)."""

    data: Any
    total: int
    current: int

    def to_dict(self) -> dict:
        return {"data": self.data, "total": self.total, "current": self.current}


def build_query_string(query_params: str | Mapping | None) -> str:
    """
    URL-encode query parameters given as "k=v&k2=v2" or a mapping.
    Keys are kept verbatim so OData options like $filter keep their '$'.
    """
    if not query_params:
        return ""
    if isinstance(query_params, Mapping):
        pairs = [(str(k), "" if v is None else str(v)) for k, v in query_params.items()]
    else:
        pairs = parse_qsl(query_params.lstrip("?"), keep_blank_values=True)
    return "&".join(f"{key}={quote(value, safe='')}" for key, value in pairs)


def format_key(record_id: Any) -> str:
    """
    OData key segment for a record id: scalars render as (id) verbatim,
    mappings as a composite key (k='v',n=1) with string values quoted.
    """
    if isinstance(record_id, Mapping):
        parts = []
        for name, value in record_id.items():
            if isinstance(value, str):
                value = "'" + value.replace("'", "''") + "'"
            elif isinstance(value, bool):
                value = "true" if value else "false"
            parts.append(f"{name}={value}")
        return "(" + ",".join(parts) + ")"
    return f"({record_id})"


class RequestExecutor:
    def __init__(
        self,
        http_client: httpx.Client,
        token_manager: TokenManager,
        api_base_url: str,
        *,
        valid_http_status_codes=VALID_HTTP_STATUS_CODES,
        retry_on_unauthorized: bool = False,
    ):
        self.http_client = http_client
        self.token_manager = token_manager
        self.api_base_url = api_base_url.rstrip("/")
        self.valid_http_status_codes = frozenset(valid_http_status_codes)
        self.retry_on_unauthorized = retry_on_unauthorized
        self.last_http_status: int | None = None

    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token_manager.access_token}",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def validate_method(method: str) -> str:
        """Upper-cased method, or ApiError before anything is sent."""
        upper_method = (method or "").upper()
        if upper_method not in SUPPORTED_METHODS:
            raise ApiError(f"'{method}' is not a supported http method", method=method)
        return upper_method

    def execute(self, method: str, path: str, data: Any = None, query_params: str | Mapping | None = ""):
        """
        Send one request and return the decoded body (RequestEnvelope for GET).
        Raises ApiError for unsupported methods, transport failures and non-accepted statuses.
        """
        upper_method = self.validate_method(method)

        url = f"{self.api_base_url}/{path.lstrip('/')}"
        total_items = 0
        if upper_method == "GET":
            total_items = self.count(path)

        if upper_method != "POST":
            query = build_query_string(query_params)
            if query:
                url = f"{url}?{query}"

        content = None
        if upper_method in ("POST", "PUT", "PATCH"):
            content = json.dumps(data if data is not None else {})

        response = self._send(upper_method, url, content)
        if response.status_code == 401:
            logger.warning("%s %s returned 401; re-authenticating", upper_method, url)
            self.token_manager.ensure_valid_token(force_refresh=True)
            if self.retry_on_unauthorized:
                if upper_method == "GET":
                    # the earlier count went out with the rejected token
                    total_items = self.count(path)
                response = self._send(upper_method, url, content)

        if response.status_code not in self.valid_http_status_codes:
            raise ApiError(
                response.text,
                http_status=response.status_code,
                url=url,
                method=upper_method,
                raw_body=response.text,
            )

        body = self._decode(response, upper_method, url)
        if upper_method != "GET":
            return body
        if isinstance(body, dict) and "value" in body:
            records = body["value"]
        else:
            records = body
        current = len(records) if isinstance(records, list) else (0 if records is None else 1)
        return RequestEnvelope(data=records, total=total_items, current=current)

    def count(self, path: str) -> int:
        """Total number of records at path via $count. Advisory: any failure yields 0."""
        url = f"{self.api_base_url}/{path.lstrip('/')}/$count"
        try:
            response = self.http_client.get(url, headers=self.headers())
        except httpx.TransportError as e:
            logger.warning("Count query %s failed: %s", url, e)
            return 0
        if response.status_code not in self.valid_http_status_codes:
            logger.warning("Count query %s returned HTTP %s", url, response.status_code)
            return 0
        text = response.text.strip().lstrip("\ufeff")
        try:
            return int(text)
        except ValueError:
            logger.warning("Count query %s returned a non-integer body: %r", url, text[:100])
            return 0

    def _send(self, method: str, url: str, content: str | None) -> httpx.Response:
        try:
            response = self.http_client.request(method, url, content=content, headers=self.headers())
        except httpx.TransportError as e:
            raise ApiError(f"Transport error: '{e}'", url=url, method=method) from e
        self.last_http_status = response.status_code
        return response

    @staticmethod
    def _decode(response: httpx.Response, method: str, url: str):
        if not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"Couldn't parse json in response: {e}",
                http_status=response.status_code,
                url=url,
                method=method,
                raw_body=response.text,
            ) from e
