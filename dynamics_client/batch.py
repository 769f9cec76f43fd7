"""
OData $batch create: one POST wrapped in a change set wrapped in a batch.

The service answers with a multipart/mixed envelope even for a single operation, so two statuses
are checked: the outer /$batch status (must be 200) and the embedded response status (must be 201).
"""
import json
import logging
import re
import uuid
from email import policy
from email.parser import BytesParser
from typing import Any

import httpx

from dynamics_client.auth import TokenManager
from dynamics_client.errors import ApiError

logger = logging.getLogger(__name__)

STATUS_LINE_RE = re.compile(r"HTTP/\d\.\d\s+(\d{3})")
JSON_OBJECT_RE = re.compile(r"(\{.*\})", re.DOTALL)


def new_boundary(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def build_batch_body(
    resource: str,
    entity: str,
    data: Any,
    batch_boundary: str,
    changeset_boundary: str,
) -> str:
    """Render the multipart/mixed batch payload for a single embedded create."""
    payload = json.dumps(data)
    lines = [
        f"--{batch_boundary}",
        f"Content-Type: multipart/mixed; boundary={changeset_boundary}",
        "",
        f"--{changeset_boundary}",
        "Content-Type: application/http",
        "Content-Transfer-Encoding: binary",
        "Content-ID: 1",
        "",
        f"POST {resource.rstrip('/')}/data/{entity} HTTP/1.1",
        "Content-Type: application/json;odata.metadata=minimal",
        "",
        payload,
        f"--{changeset_boundary}--",
        f"--{batch_boundary}--",
        "",
    ]
    return "\r\n".join(lines)


def _split_http_message(text: str) -> tuple[int | None, dict, str]:
    """Split an embedded HTTP response into (status, headers, body)."""
    text = text.replace("\r\n", "\n").lstrip("\n")
    head, _, body = text.partition("\n\n")
    lines = head.split("\n")
    match = STATUS_LINE_RE.match(lines[0]) if lines else None
    status = int(match.group(1)) if match else None
    headers = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    return status, headers, body.strip()


def _embedded_responses(content_type: str, body: bytes) -> list[str]:
    """Payloads of every application/http part, found with the stdlib MIME parser."""
    if "boundary=" not in (content_type or ""):
        return []
    raw = f"Content-Type: {content_type}\r\nMIME-Version: 1.0\r\n\r\n".encode("ascii") + body
    message = BytesParser(policy=policy.HTTP).parsebytes(raw)
    found = []
    for part in message.walk():
        if part.get_content_type() != "application/http":
            continue
        payload = part.get_payload(decode=True)
        if isinstance(payload, bytes):
            found.append(payload.decode("utf-8", errors="replace"))
        elif isinstance(payload, str):
            found.append(payload)
    return found


def parse_batch_response(content_type: str, body: bytes) -> tuple[int | None, dict, str]:
    """
    Return (status, headers, body_text) of the first embedded response.
    Falls back to pattern matching the status line and the first JSON object
    when the envelope can't be parsed as MIME.
    """
    parts = _embedded_responses(content_type, body)
    if parts:
        return _split_http_message(parts[0])
    text = body.decode("utf-8", errors="replace")
    match = STATUS_LINE_RE.search(text)
    status = int(match.group(1)) if match else None
    json_match = JSON_OBJECT_RE.search(text)
    return status, {}, json_match.group(1) if json_match else ""


class BatchExecutor:
    def __init__(self, http_client: httpx.Client, token_manager: TokenManager, api_base_url: str, resource: str):
        self.http_client = http_client
        self.token_manager = token_manager
        self.api_base_url = api_base_url.rstrip("/")
        self.resource = resource
        self.last_http_status: int | None = None

    @property
    def batch_url(self) -> str:
        return f"{self.api_base_url}/$batch"

    def batch_create(self, entity: str, data: Any):
        """Create one entity through /$batch and return the created record."""
        request_json = json.dumps(data)
        batch_boundary = new_boundary("batch")
        changeset_boundary = new_boundary("changeset")
        body = build_batch_body(self.resource, entity, data, batch_boundary, changeset_boundary)
        headers = {
            "Content-Type": f"multipart/mixed; boundary={batch_boundary}",
            "Authorization": f"Bearer {self.token_manager.access_token}",
            "Accept": "multipart/mixed",
        }
        url = self.batch_url

        try:
            response = self.http_client.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.TransportError as e:
            raise ApiError(
                f"BATCH entity '{entity}' transport error: '{e}'",
                url=url,
                method="POST",
                request_body=request_json,
            ) from e

        self.last_http_status = response.status_code
        raw = response.text
        if response.status_code != 200:
            raise ApiError(
                f"BATCH entity '{entity}' bad batch status",
                http_status=response.status_code,
                url=url,
                method="POST",
                raw_body=raw,
                request_body=request_json,
            )

        status, _, inner_body = parse_batch_response(response.headers.get("content-type", ""), response.content)
        if status is None:
            raise ApiError(
                f"BATCH entity '{entity}' couldn't find an embedded http status code in response",
                http_status=response.status_code,
                url=url,
                method="POST",
                raw_body=raw,
                request_body=request_json,
            )
        self.last_http_status = status
        if status != 201:
            raise ApiError(
                f"BATCH entity '{entity}' bad http status code: '{status}'",
                http_status=status,
                url=url,
                method="POST",
                raw_body=raw,
                request_body=request_json,
            )

        json_match = JSON_OBJECT_RE.search(inner_body)
        if not json_match:
            raise ApiError(
                f"BATCH entity '{entity}' couldn't find json in response",
                http_status=status,
                url=url,
                method="POST",
                raw_body=raw,
                request_body=request_json,
            )
        try:
            created = json.loads(json_match.group(1))
        except ValueError as e:
            raise ApiError(
                f"BATCH entity '{entity}' couldn't parse json in response: {e}",
                http_status=status,
                url=url,
                method="POST",
                raw_body=raw,
                request_body=request_json,
            ) from e
        logger.debug("BATCH entity '%s' created", entity)
        return created
