"""
Multipart handling for POST /data/$batch.
Reads the change set's embedded requests and renders the multipart/mixed response envelope.
"""
import json
import uuid
from email import policy
from email.parser import BytesParser

REASONS = {200: "OK", 201: "Created", 204: "No Content", 400: "Bad Request", 404: "Not Found"}


def embedded_requests(content_type: str, body: bytes) -> list[tuple[str, str, str]]:
    """(method, url, body) of every application/http part in the batch request."""
    raw = f"Content-Type: {content_type}\r\nMIME-Version: 1.0\r\n\r\n".encode("ascii") + body
    message = BytesParser(policy=policy.HTTP).parsebytes(raw)
    requests = []
    for part in message.walk():
        if part.get_content_type() != "application/http":
            continue
        text = part.get_payload(decode=True).decode("utf-8", errors="replace").replace("\r\n", "\n")
        head, _, payload = text.lstrip("\n").partition("\n\n")
        request_line = head.split("\n", 1)[0].split()
        if len(request_line) < 2:
            continue
        requests.append((request_line[0].upper(), request_line[1], payload.strip()))
    return requests


def render_response(responses: list[tuple[int, dict | None]]) -> tuple[str, str]:
    """Return (content_type, body) wrapping each (status, json body) in one change set response."""
    batch_boundary = f"batchresponse_{uuid.uuid4()}"
    changeset_boundary = f"changesetresponse_{uuid.uuid4()}"
    lines = [
        f"--{batch_boundary}",
        f"Content-Type: multipart/mixed; boundary={changeset_boundary}",
        "",
    ]
    for content_id, (status, payload) in enumerate(responses, start=1):
        lines += [
            f"--{changeset_boundary}",
            "Content-Type: application/http",
            "Content-Transfer-Encoding: binary",
            f"Content-ID: {content_id}",
            "",
            f"HTTP/1.1 {status} {REASONS.get(status, '')}".rstrip(),
            "Content-Type: application/json; odata.metadata=minimal",
            "OData-Version: 4.0",
            "",
            json.dumps(payload) if payload is not None else "",
        ]
    lines += [f"--{changeset_boundary}--", f"--{batch_boundary}--", ""]
    return f"multipart/mixed; boundary={batch_boundary}", "\r\n".join(lines)
