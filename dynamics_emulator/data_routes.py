"""
Emulated Dynamics OData service under /data.
GET collections/records, $count, POST, PUT, PATCH, DELETE and a single-change-set $batch.
"""
import json
import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from dynamics_emulator import entities
from dynamics_emulator.auth import RequireToken
from dynamics_emulator.batch import embedded_requests, render_response
from dynamics_emulator.config import RESOURCE

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/data")


def _odata_error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


def _resolve(segment: str):
    """Return (entity, key) or an error response."""
    parsed = entities.split_segment(segment)
    if parsed is None or not entities.is_known(parsed[0]):
        return None, None, _odata_error(404, "NotFound", f"Resource not found for the segment '{segment}'.")
    return parsed[0], parsed[1], None


async def _json_body(request: Request):
    try:
        data = await request.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _int_option(request: Request, name: str) -> int | None:
    value = request.query_params.get(name)
    if value is None:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        return None


@router.post("/$batch")
async def batch(request: Request, claims: dict = RequireToken):
    """Run every embedded create of the change set; answer with a multipart/mixed envelope."""
    content_type = request.headers.get("content-type", "")
    if "multipart/mixed" not in content_type or "boundary=" not in content_type:
        return _odata_error(400, "BadRequest", "The batch request must be multipart/mixed with a boundary.")
    responses = []
    for method, url, body in embedded_requests(content_type, await request.body()):
        entity = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
        if method != "POST":
            responses.append((400, {"error": {"code": "BadRequest", "message": f"Unsupported batch method {method}"}}))
            continue
        if not entities.is_known(entity):
            message = f"Resource not found for the segment '{entity}'."
            responses.append((404, {"error": {"code": "NotFound", "message": message}}))
            continue
        try:
            data = json.loads(body)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            responses.append((400, {"error": {"code": "BadRequest", "message": "Invalid JSON payload"}}))
            continue
        responses.append((201, entities.create(entity, data)))
    if not responses:
        return _odata_error(400, "BadRequest", "The batch request contains no operations.")
    logger.info("batch: %s operation(s) for %s", len(responses), claims.get("sub"))
    media_type, payload = render_response(responses)
    return Response(content=payload, status_code=200, media_type=media_type)


@router.get("/{entity}/$count")
def count(entity: str, claims: dict = RequireToken):
    if not entities.is_known(entity):
        return _odata_error(404, "NotFound", f"Resource not found for the segment '{entity}'.")
    return PlainTextResponse(str(len(entities.list_records(entity))))


@router.get("/{segment}")
def read(segment: str, request: Request, claims: dict = RequireToken):
    entity, key, error = _resolve(segment)
    if error:
        return error
    if key is not None:
        record = entities.find(entity, key)
        if record is None:
            return _odata_error(404, "NotFound", f"No record found for {segment}.")
        return {"@odata.context": f"{RESOURCE}/data/$metadata#{entity}/$entity", **record}
    records = entities.list_records(entity)
    skip = _int_option(request, "$skip") or 0
    top = _int_option(request, "$top")
    page = records[skip:] if top is None else records[skip:skip + top]
    return {"@odata.context": f"{RESOURCE}/data/$metadata#{entity}", "value": page}


@router.post("/{segment}")
async def create(segment: str, request: Request, claims: dict = RequireToken):
    entity, key, error = _resolve(segment)
    if error:
        return error
    if key is not None:
        return _odata_error(400, "BadRequest", "POST must target an entity set, not a record.")
    data = await _json_body(request)
    if data is None:
        return _odata_error(400, "BadRequest", "Invalid JSON payload.")
    return JSONResponse(status_code=201, content=entities.create(entity, data))


@router.put("/{segment}")
async def replace(segment: str, request: Request, claims: dict = RequireToken):
    return await _write(segment, request, entities.replace)


@router.patch("/{segment}")
async def update(segment: str, request: Request, claims: dict = RequireToken):
    return await _write(segment, request, entities.update)


async def _write(segment: str, request: Request, operation):
    entity, key, error = _resolve(segment)
    if error:
        return error
    if key is None:
        return _odata_error(400, "BadRequest", "A record key is required.")
    data = await _json_body(request)
    if data is None:
        return _odata_error(400, "BadRequest", "Invalid JSON payload.")
    if operation(entity, key, data) is None:
        return _odata_error(404, "NotFound", f"No record found for {segment}.")
    return Response(status_code=204)


@router.delete("/{segment}")
def remove(segment: str, claims: dict = RequireToken):
    entity, key, error = _resolve(segment)
    if error:
        return error
    if key is None:
        return _odata_error(400, "BadRequest", "A record key is required.")
    if not entities.delete(entity, key):
        return _odata_error(404, "NotFound", f"No record found for {segment}.")
    return Response(status_code=204)
