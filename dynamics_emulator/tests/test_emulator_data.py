"""
Pytest tests for the emulated OData /data service: key parsing, CRUD, $count and $batch.
"""
import pytest
from fastapi.testclient import TestClient

from dynamics_emulator import entities, token_endpoint
from dynamics_emulator.batch import embedded_requests, render_response
from dynamics_emulator.config import CLIENT_ID, PASSWORD, RESOURCE, TENANT, USERNAME
from dynamics_emulator.main import app


@pytest.fixture
def client():
    entities.reset()
    token_endpoint.reset()
    with TestClient(app) as c:
        yield c
    entities.reset()
    token_endpoint.reset()


@pytest.fixture
def auth_headers(client):
    r = client.post(
        f"/{TENANT}/oauth2/token",
        data={
            "grant_type": "password",
            "client_id": CLIENT_ID,
            "resource": RESOURCE,
            "username": USERNAME,
            "password": PASSWORD,
        },
    )
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def _batch_request(entity: str, payload: str) -> tuple[str, str]:
    body = "\r\n".join(
        [
            "--batch_1",
            "Content-Type: multipart/mixed; boundary=changeset_1",
            "",
            "--changeset_1",
            "Content-Type: application/http",
            "Content-Transfer-Encoding: binary",
            "Content-ID: 1",
            "",
            f"POST {RESOURCE}/data/{entity} HTTP/1.1",
            "Content-Type: application/json",
            "",
            payload,
            "--changeset_1--",
            "--batch_1--",
            "",
        ]
    )
    return "multipart/mixed; boundary=batch_1", body


@pytest.mark.parametrize(
    "segment,expected",
    [
        ("Customers", ("Customers", None)),
        ("Customers(5)", ("Customers", {"Id": "5"})),
        ("Customers('US-001')", ("Customers", {"Id": "US-001"})),
        (
            "Customers(dataAreaId='usmf',CustomerAccount='O''Neil, Ltd')",
            ("Customers", {"dataAreaId": "usmf", "CustomerAccount": "O'Neil, Ltd"}),
        ),
        ("not a segment", None),
    ],
)
def test_split_segment(segment, expected):
    assert entities.split_segment(segment) == expected


def test_create_read_update_delete(client, auth_headers):
    r = client.post("/data/Customers", json={"Name": "Contoso"}, headers=auth_headers)
    assert r.status_code == 201
    record_id = r.json()["Id"]

    r = client.get(f"/data/Customers({record_id})", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["Name"] == "Contoso"
    assert r.json()["@odata.context"].endswith("#Customers/$entity")

    r = client.patch(f"/data/Customers({record_id})", json={"City": "Oslo"}, headers=auth_headers)
    assert r.status_code == 204
    r = client.put(f"/data/Customers({record_id})", json={"Name": "Renamed"}, headers=auth_headers)
    assert r.status_code == 204
    assert entities.find("Customers", {"Id": str(record_id)}) == {"Name": "Renamed", "Id": record_id}

    r = client.delete(f"/data/Customers({record_id})", headers=auth_headers)
    assert r.status_code == 204
    r = client.delete(f"/data/Customers({record_id})", headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NotFound"


def test_collection_paging_and_count(client, auth_headers):
    for name in ("A", "B", "C"):
        client.post("/data/Vendors", json={"Name": name}, headers=auth_headers)

    r = client.get("/data/Vendors/$count", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert r.text == "3"

    r = client.get("/data/Vendors", params={"$skip": "1", "$top": "1"}, headers=auth_headers)
    assert [v["Name"] for v in r.json()["value"]] == ["B"]


def test_unknown_entity(client, auth_headers):
    assert client.get("/data/Nothing", headers=auth_headers).status_code == 404
    assert client.get("/data/Nothing/$count", headers=auth_headers).status_code == 404


def test_write_requires_key(client, auth_headers):
    r = client.patch("/data/Customers", json={"Name": "x"}, headers=auth_headers)
    assert r.status_code == 400


def test_batch_creates_record(client, auth_headers):
    content_type, body = _batch_request("Customers", '{"Name": "Batched"}')
    r = client.post("/data/$batch", content=body, headers={**auth_headers, "Content-Type": content_type})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("multipart/mixed; boundary=batchresponse_")
    assert "HTTP/1.1 201 Created" in r.text
    assert entities.list_records("Customers")[0]["Name"] == "Batched"


def test_batch_unknown_entity_is_embedded_404(client, auth_headers):
    content_type, body = _batch_request("Nothing", "{}")
    r = client.post("/data/$batch", content=body, headers={**auth_headers, "Content-Type": content_type})
    assert r.status_code == 200
    assert "HTTP/1.1 404 Not Found" in r.text


def test_batch_requires_multipart(client, auth_headers):
    r = client.post("/data/$batch", json={"Name": "x"}, headers=auth_headers)
    assert r.status_code == 400


def test_embedded_requests_and_render():
    content_type, body = _batch_request("Vendors", '{"Name": "V"}')
    assert embedded_requests(content_type, body.encode()) == [
        ("POST", f"{RESOURCE}/data/Vendors", '{"Name": "V"}'),
    ]
    media_type, rendered = render_response([(201, {"Id": 1})])
    boundary = media_type.split("boundary=", 1)[1]
    assert rendered.startswith(f"--{boundary}\r\n")
    assert rendered.endswith(f"--{boundary}--\r\n")
    assert '{"Id": 1}' in rendered
