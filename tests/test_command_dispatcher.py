import base64
import io
import json

import pytest
from PIL import Image

from network.command_dispatcher import CommandDispatcher


@pytest.fixture
def dispatcher(service):
    return CommandDispatcher(service)


async def _call(dispatcher, request):
    return json.loads(await dispatcher.handle_request(request))


@pytest.mark.asyncio
async def test_read_metadata(dispatcher, png_file):
    resp = await _call(dispatcher, {"command": "read_metadata", "path": png_file})
    assert resp["status"] == "success"
    assert resp["metadata"]["width"] == 800
    assert resp["metadata"]["generation_parameters"]["seed"] == "12345"


@pytest.mark.asyncio
async def test_read_metadata_batch(dispatcher, png_file, image_dir):
    missing = str(image_dir / "missing.png")
    resp = await _call(dispatcher, {"command": "read_metadata_batch", "paths": [png_file, missing]})
    assert resp["status"] == "success"
    assert resp["metadata"][png_file]["mime_type"] == "image/png"
    assert missing in resp["errors"]


@pytest.mark.asyncio
async def test_generate_thumbnail_with_overrides(dispatcher, jpeg_file):
    resp = await _call(dispatcher, {"command": "generate_thumbnail", "path": jpeg_file,
                                    "size": 40, "format": "png"})
    thumb = resp["thumbnail"]
    assert (thumb["width"], thumb["height"], thumb["mime_type"]) == (40, 30, "image/png")
    with Image.open(io.BytesIO(base64.b64decode(thumb["data"]))) as img:
        assert img.size == (40, 30)


@pytest.mark.asyncio
async def test_generate_thumbnail_default_config(dispatcher, png_file):
    resp = await _call(dispatcher, {"command": "generate_thumbnail", "path": png_file})
    assert resp["thumbnail"]["mime_type"] == "image/webp"
    assert resp["thumbnail"]["width"] == 64


@pytest.mark.asyncio
async def test_thumbnail_batch(dispatcher, png_file, webp_file, image_dir):
    bogus = image_dir / "bogus.png"
    bogus.write_bytes(b"not an image at all")
    resp = await _call(dispatcher, {"command": "thumbnail_batch", "paths": [png_file, webp_file, str(bogus)]})
    assert set(resp["thumbnails"]) == {png_file, webp_file}
    assert set(resp["errors"]) == {str(bogus)}


@pytest.mark.asyncio
async def test_write_rating(dispatcher, png_file):
    resp = await _call(dispatcher, {"command": "write_rating", "path": png_file, "rating": 5})
    assert resp["status"] == "success"
    resp = await _call(dispatcher, {"command": "read_metadata", "path": png_file})
    assert resp["metadata"]["rating"] == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [6, -1, "3", None])
async def test_write_rating_validation(dispatcher, png_file, rating):
    resp = await _call(dispatcher, {"command": "write_rating", "path": png_file, "rating": rating})
    assert resp["status"] == "error"
    assert resp["message"].startswith("Validation Error")


@pytest.mark.asyncio
async def test_write_rating_webp(dispatcher, webp_file):
    resp = await _call(dispatcher, {"command": "write_rating", "path": webp_file, "rating": 2})
    assert resp["status"] == "error"
    assert resp["message"].startswith("UnsupportedVariantError")


@pytest.mark.asyncio
async def test_clear_thumbnail_cache(dispatcher, png_file):
    await _call(dispatcher, {"command": "generate_thumbnail", "path": png_file})
    resp = await _call(dispatcher, {"command": "clear_thumbnail_cache"})
    assert resp["removed"] == 2


@pytest.mark.asyncio
async def test_missing_file_is_reported(dispatcher, image_dir):
    resp = await _call(dispatcher, {"command": "read_metadata", "path": str(image_dir / "gone.png")})
    assert resp["status"] == "error"
    assert resp["message"].startswith("ImageIOError")


@pytest.mark.asyncio
@pytest.mark.parametrize("request_data,fragment", [
    ({}, "missing 'command'"),
    ([], "JSON object"),
    ({"command": "explode"}, "Unknown command"),
    ({"command": "read_metadata", "path": ""}, "InvalidInputError"),
])
async def test_bad_requests(dispatcher, request_data, fragment):
    resp = await _call(dispatcher, request_data)
    assert resp["status"] == "error"
    assert fragment in resp["message"]


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error(dispatcher, png_file, monkeypatch):
    async def broken(path):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(dispatcher.service, "read_metadata", broken)
    resp = await _call(dispatcher, {"command": "read_metadata", "path": png_file})
    assert resp["status"] == "error"
    assert resp["message"] == "Internal Server Error: disk on fire"


@pytest.mark.asyncio
async def test_service_value_error_is_not_a_validation_error(dispatcher, png_file, monkeypatch):
    async def broken(path, config=None):
        raise ValueError("image has wrong mode")

    monkeypatch.setattr(dispatcher.service, "load_thumbnail", broken)
    resp = await _call(dispatcher, {"command": "generate_thumbnail", "path": png_file})
    assert resp["status"] == "error"
    assert resp["message"] == "Internal Server Error: image has wrong mode"
