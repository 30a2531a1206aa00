import io

import pytest
from PIL import Image

from conftest import make_image, run
from core.errors import InvalidInput
from models.file import FileUpload
from services.file_service import (
    ATTACHMENTS_FOLDER,
    MAX_FILE_SIZE,
    MAX_IMAGE_DIMENSION,
    compress_image,
    validate_file,
)


def pdf(size, name="doc.pdf"):
    return FileUpload(name=name, mime_type="application/pdf", content=b"0" * size)


def test_validate_file_size_limit():
    validate_file(pdf(MAX_FILE_SIZE))

    with pytest.raises(InvalidInput):
        validate_file(pdf(MAX_FILE_SIZE + 1))


@pytest.mark.parametrize("mime_type", ["text/plain", "image/gif", "application/zip"])
def test_validate_file_mime_allowlist(mime_type):
    with pytest.raises(InvalidInput):
        validate_file(FileUpload(name="file", mime_type=mime_type, content=b"x"))


def test_compress_image_caps_longest_side():
    original = FileUpload(name="big.jpg", mime_type="image/jpeg", content=make_image(4000, 2000))

    compressed = compress_image(original)

    with Image.open(io.BytesIO(compressed.content)) as img:
        assert img.size == (MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION // 2)
        assert img.format == "JPEG"
    assert compressed.name == "big.jpg"


def test_compress_image_portrait_png():
    original = FileUpload(name="tall.png", mime_type="image/png", content=make_image(1000, 3840, "PNG"))

    compressed = compress_image(original)

    with Image.open(io.BytesIO(compressed.content)) as img:
        assert img.size == (500, MAX_IMAGE_DIMENSION)
        assert img.format == "PNG"


def test_compress_image_leaves_pdf_and_garbage_alone():
    document = pdf(100)
    garbage = FileUpload(name="broken.jpg", mime_type="image/jpeg", content=b"not an image")

    assert compress_image(document) is document
    assert compress_image(garbage) is garbage


def test_upload_file_uses_folder(services, platform):
    uploaded = run(services.files.upload_file(pdf(10, "contract.pdf"), "contracts"))

    assert uploaded.name == "contracts/contract.pdf"
    assert uploaded.size == 10
    assert platform.blobs.contents[uploaded.id] == b"0" * 10


def test_upload_profile_picture(services, platform):
    picture = FileUpload(name="me.jpg", mime_type="image/jpeg", content=make_image(2500, 2500))

    uploaded = run(services.files.upload_profile_picture(picture))

    assert uploaded.name == "profiles/me.jpg"
    with Image.open(io.BytesIO(platform.blobs.contents[uploaded.id])) as img:
        assert img.size == (MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION)


def test_upload_many_partial_failure(services):
    files = [
        pdf(10, "a.pdf"),
        FileUpload(name="b.exe", mime_type="application/octet-stream", content=b"MZ"),
        pdf(10, "c.pdf"),
    ]

    report = run(services.files.upload_many(files, ATTACHMENTS_FOLDER))

    assert [f.name for f in report.uploaded] == ["attachments/a.pdf", "attachments/c.pdf"]
    assert report.failed == ["b.exe"]


def test_urls(services):
    assert services.files.get_file_url("f1").endswith("/files/f1/view")
    assert services.files.get_download_url("f1").endswith("/files/f1/download")
    assert services.files.get_preview_url("f1", width=200).endswith("/files/f1/preview?width=200")


def test_file_info_and_delete(services):
    uploaded = run(services.files.upload_attachment(pdf(5)))

    assert run(services.files.get_file_info(uploaded.id)).name == "attachments/doc.pdf"
    assert run(services.files.delete_file(uploaded.id)) is True
    assert run(services.files.get_file_info(uploaded.id)) is None
    assert run(services.files.delete_file(uploaded.id)) is False


def test_storage_stats(services):
    run(services.files.upload_file(pdf(10, "a.pdf"), "receipts"))
    run(services.files.upload_file(pdf(20, "b.PDF"), "receipts"))
    run(services.files.upload_file(FileUpload(name="c.png", mime_type="image/png", content=b"png"), "profiles"))

    stats = run(services.files.storage_stats())

    assert stats.total_files == 3
    assert stats.total_size == 33
    assert stats.file_types == {"pdf": 2, "png": 1}
    assert stats.folders == {"receipts": 2, "profiles": 1}
    assert len(run(services.files.list_files(limit=2))) == 2
