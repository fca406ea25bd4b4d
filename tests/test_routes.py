"""Tests for the archive endpoints."""

import base64
import io
import json

import pytest

from conftest import FakeImageClient, make_tar_bytes
from saveomat.auth import EMPTY_AUTHENTICATOR, from_reader, registry_auth_for
from saveomat.errors import PullError
from saveomat.routes import app

AUTH64 = base64.urlsafe_b64encode(b"test:test").decode()
TEST_AUTH_CONF = json.dumps(
    {
        "auths": {
            "test.io": {"auth": AUTH64},
            "https://index.docker.io/v1/": {"auth": AUTH64},
        }
    }
)


def use_client(client):
    app.config["IMAGE_CLIENT"] = client
    return client


def upload(images: list[str], config_json: str | None = None) -> dict:
    data = {"images.txt": (io.BytesIO("\n".join(images).encode()), "images.txt")}
    if config_json is not None:
        data["config.json"] = (io.BytesIO(config_json.encode()), "config.json")
    return data


def test_post_tar(http_client):
    images = ["busybox", "open.io/busybox", "test.io/busybox"]
    fake = use_client(FakeImageClient())

    resp = http_client.post("/tar", data=upload(images), content_type="multipart/form-data")

    assert resp.status_code == 200
    assert resp.data == make_tar_bytes()
    assert resp.mimetype == "application/x-tar"
    assert resp.headers["Content-Disposition"] == 'attachment; filename="images.tar"'
    assert fake.saves == [images]
    assert set(fake.pulls) == {(image, registry_auth_for(EMPTY_AUTHENTICATOR, image)) for image in images}


def test_post_tar_with_auth(http_client):
    images = ["busybox", "open.io/busybox", "test.io/busybox"]
    fake = use_client(FakeImageClient())
    authenticator = from_reader(TEST_AUTH_CONF)

    resp = http_client.post(
        "/tar", data=upload(images, TEST_AUTH_CONF), content_type="multipart/form-data"
    )

    assert resp.status_code == 200
    assert resp.data == make_tar_bytes()
    assert set(fake.pulls) == {(image, registry_auth_for(authenticator, image)) for image in images}


def test_post_tar_normalizes_image_list(http_client):
    fake = use_client(FakeImageClient())
    images = ["# base images", " busybox ", "", "alpine:3.19", "  "]

    resp = http_client.post("/tar", data=upload(images), content_type="multipart/form-data")

    assert resp.status_code == 200
    assert fake.saves == [["busybox", "alpine:3.19"]]


def test_post_tar_without_images_is_rejected(http_client):
    fake = use_client(FakeImageClient())

    resp = http_client.post("/tar", data=upload(["# nothing", ""]), content_type="multipart/form-data")

    assert resp.status_code == 400
    assert fake.pulls == []
    assert fake.saves == []


def test_post_tar_without_upload(http_client):
    use_client(FakeImageClient())

    resp = http_client.post("/tar", data={}, content_type="multipart/form-data")

    assert resp.status_code == 400


def test_post_tar_with_invalid_credentials(http_client):
    fake = use_client(FakeImageClient())

    resp = http_client.post(
        "/tar", data=upload(["busybox"], "{not json"), content_type="multipart/form-data"
    )

    assert resp.status_code == 400
    assert resp.get_json()["stage"] == "credentials"
    assert fake.pulls == []


def test_post_tar_with_invalid_reference(http_client):
    fake = use_client(FakeImageClient())

    resp = http_client.post(
        "/tar", data=upload(["busybox", "not a valid ref!!"]), content_type="multipart/form-data"
    )

    assert resp.status_code == 400
    assert resp.get_json()["stage"] == "parse"
    assert fake.saves == []


def test_post_tar_with_non_utf8_image_list(http_client):
    fake = use_client(FakeImageClient())
    data = {"images.txt": (io.BytesIO(b"busybox\n\xff\xfe\n"), "images.txt")}

    resp = http_client.post("/tar", data=data, content_type="multipart/form-data")

    assert resp.status_code == 400
    assert resp.get_json()["stage"] == "parse"
    assert fake.saves == []


def test_get_tar_with_trailing_newline_in_reference(http_client):
    fake = use_client(FakeImageClient())

    resp = http_client.get("/tar?image=busybox%0A")

    assert resp.status_code == 400
    assert resp.get_json()["stage"] == "parse"
    assert fake.pulls == []


def test_get_tar(http_client):
    images = ["busybox", "open.io/busybox"]
    fake = use_client(FakeImageClient())

    resp = http_client.get("/tar", query_string=[("image", image) for image in images])

    assert resp.status_code == 200
    assert resp.data == make_tar_bytes()
    assert fake.saves == [images]


def test_get_tar_without_images(http_client):
    fake = use_client(FakeImageClient())

    assert http_client.get("/tar").status_code == 400
    assert http_client.get("/tar?image=&image=%23comment").status_code == 400
    assert fake.pulls == []


@pytest.mark.parametrize(
    "message, status",
    [
        ("manifest for test.io/missing:latest not found", 404),
        ("unauthorized: authentication required", 401),
        ("denied: requested access to the resource is forbidden", 403),
        ("received unexpected HTTP status: 503 Service Unavailable", 503),
        ("received unexpected HTTP status: 502 Bad Gateway", 502),
        ("net/http: request canceled (Client.Timeout exceeded)", 408),
        ("something else went wrong", 500),
    ],
)
def test_pull_errors_map_to_status(http_client, message, status):
    fake = use_client(FakeImageClient(failures={"test.io/missing": PullError(message, "test.io/missing")}))

    resp = http_client.get("/tar?image=busybox&image=test.io/missing")

    assert resp.status_code == status
    body = resp.get_json()
    assert body["stage"] == "pull"
    assert message in body["error"]
    assert fake.saves == []


def test_upload_too_large(http_client):
    use_client(FakeImageClient())
    images = ["busybox"] * (app.config["MAX_CONTENT_LENGTH"] // 7 + 1)

    resp = http_client.post("/tar", data=upload(images), content_type="multipart/form-data")

    assert resp.status_code == 413


def test_healthz(http_client):
    resp = http_client.get("/healthz")
    assert resp.status_code == 200
    assert resp.data == b"ok"
