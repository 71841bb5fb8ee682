import io

import pytest
from PIL import Image

from conftest import SAMPLE_PARAMETERS, png_bytes
from core.errors import ImageDecodeError, InvalidInputError
from core.image_reader import ImageReader
from core.models import ThumbnailConfig
from core.thumbnail_generator import build_metadata, encode, encoder_for, generate, resize


def _reader(tmp_path, data, name="img.png"):
    path = tmp_path / name
    path.write_bytes(data)
    return ImageReader.open(str(path))


@pytest.mark.parametrize("source,expected", [
    ((2000, 1000), (256, 128)),
    ((1000, 2000), (128, 256)),
    ((600, 600), (256, 256)),
    ((300, 150), (256, 128)),
])
def test_resize_fits_box(source, expected):
    img = Image.new("RGB", source)
    assert resize(img, 256).size == expected


def test_small_image_not_upscaled():
    assert resize(Image.new("RGB", (40, 30)), 256).size == (40, 30)


def test_resize_leaves_source_untouched():
    img = Image.new("RGB", (1024, 768))
    resize(img, 64)
    assert img.size == (1024, 768)


@pytest.mark.parametrize("size", [0, -5])
def test_invalid_size(size):
    with pytest.raises(InvalidInputError):
        resize(Image.new("RGB", (10, 10)), size)


@pytest.mark.parametrize("fmt,mime", [("webp", "image/webp"), ("JPEG", "image/jpeg"),
                                      ("jpg", "image/jpeg"), ("png", "image/png")])
def test_encoder_for(fmt, mime):
    assert encoder_for(fmt)[1] == mime


def test_unknown_format():
    with pytest.raises(InvalidInputError):
        encoder_for("gif")


@pytest.mark.parametrize("mode", ["P", "RGBA", "LA", "CMYK"])
def test_encode_converts_mode_for_jpeg(mode):
    thumb = encode(Image.new(mode, (20, 10)), ThumbnailConfig(format="jpeg"))
    with Image.open(io.BytesIO(thumb.data)) as img:
        assert img.format == "JPEG"
        assert img.size == (20, 10)


def test_encode_keeps_alpha_for_webp():
    thumb = encode(Image.new("LA", (8, 8)), ThumbnailConfig(format="webp"))
    with Image.open(io.BytesIO(thumb.data)) as img:
        assert img.mode == "RGBA"
    assert thumb.mime_type == "image/webp"


def test_build_metadata_reads_headers_only(tmp_path):
    data = png_bytes(size=(320, 200), text={"parameters": SAMPLE_PARAMETERS})
    with _reader(tmp_path, data) as reader:
        metadata = build_metadata(reader)
    assert (metadata.width, metadata.height) == (320, 200)
    assert metadata.file_size == len(data)
    assert metadata.mime_type == "image/png"
    assert metadata.generation_parameters.seed == "12345"


def test_generate(tmp_path):
    with _reader(tmp_path, png_bytes(size=(800, 400))) as reader:
        bundle = generate(reader, ThumbnailConfig(size=100, format="png"))
    assert (bundle.thumbnail.width, bundle.thumbnail.height) == (100, 50)
    assert bundle.thumbnail.mime_type == "image/png"
    assert bundle.metadata.width == 800
    with Image.open(io.BytesIO(bundle.thumbnail.data)) as img:
        assert img.size == (100, 50)


def test_generate_undecodable_pixels(tmp_path):
    data = png_bytes(size=(64, 64))
    # keep the header chunks but damage the compressed pixel stream
    idat = data.index(b"IDAT") + 4
    broken = data[:idat] + b"\x00" * 8 + data[idat + 8:]
    with _reader(tmp_path, broken) as reader:
        with pytest.raises(ImageDecodeError):
            generate(reader, ThumbnailConfig(size=32))


def _png_16bit(size=(900, 300), value=65535) -> bytes:
    buf = io.BytesIO()
    Image.new("I;16", size, color=value).save(buf, "PNG")
    return buf.getvalue()


@pytest.mark.parametrize("fmt", ["webp", "jpeg", "png"])
def test_generate_16bit_grayscale(tmp_path, fmt):
    with _reader(tmp_path, _png_16bit()) as reader:
        bundle = generate(reader, ThumbnailConfig(size=90, format=fmt))
    assert (bundle.thumbnail.width, bundle.thumbnail.height) == (90, 30)
    with Image.open(io.BytesIO(bundle.thumbnail.data)) as img:
        assert img.size == (90, 30)
        assert img.convert("L").getpixel((45, 15)) >= 250


def test_16bit_scaled_to_8bit():
    img = Image.new("I;16", (4, 4), color=257 * 100 + 128)
    assert resize(img, 2).getpixel((0, 0)) == 100


def test_resize_failure_is_decode_error(monkeypatch):
    def broken(self, size, resample=None, reducing_gap=2.0):
        raise ValueError("image has wrong mode")

    monkeypatch.setattr(Image.Image, "thumbnail", broken)
    with pytest.raises(ImageDecodeError):
        resize(Image.new("RGB", (40, 40)), 16)
