"""Tests for streaming proctoring uploads to local storage."""

import io

import pytest

from exam_portal.errors import ValidationError
from exam_portal.services.recording_storage import delete_recording, recording_path, save_recording
from exam_portal.utils import is_valid_video_reference


def test_video_is_stored_and_reference_is_accepted(tmp_path):
    ref = save_recording(io.BytesIO(b"\x00" * 2048), "my clip.webm", "video/webm", str(tmp_path), 4096)

    assert ref.startswith("uploads/")
    assert ref.endswith("-my_clip.webm")
    assert is_valid_video_reference(ref)
    stored = tmp_path / ref.split("/", 1)[1]
    assert stored.read_bytes() == b"\x00" * 2048


@pytest.mark.parametrize("content_type", [None, "", "image/png", "application/octet-stream"])
def test_non_video_rejected(tmp_path, content_type):
    with pytest.raises(ValidationError):
        save_recording(io.BytesIO(b"data"), "clip.webm", content_type, str(tmp_path), 4096)
    assert list(tmp_path.iterdir()) == []


def test_oversized_upload_rejected_and_removed(tmp_path):
    with pytest.raises(ValidationError):
        save_recording(io.BytesIO(b"x" * 5000), "big.mp4", "video/mp4", str(tmp_path), 4096)
    assert list(tmp_path.iterdir()) == []


def test_path_components_stripped_from_filename(tmp_path):
    ref = save_recording(io.BytesIO(b"v"), "../../etc/passwd", "video/mp4", str(tmp_path), 10)
    assert ref.endswith("-passwd")
    assert is_valid_video_reference(ref)


def test_reference_resolves_to_stored_file_in_custom_directory(tmp_path):
    media = tmp_path / "media"
    ref = save_recording(io.BytesIO(b"abc"), "a.mp4", "video/mp4", str(media), 100, url_prefix="media")

    assert ref.startswith("media/")
    stored = recording_path(ref, str(media), url_prefix="media")
    assert stored == media / ref.split("/", 1)[1]
    assert stored.read_bytes() == b"abc"
    assert is_valid_video_reference(ref, upload_prefix="media")
    assert not is_valid_video_reference(ref)


def test_nested_prefix(tmp_path):
    ref = save_recording(io.BytesIO(b"v"), "a.mp4", "video/mp4", str(tmp_path), 10, url_prefix="/static/rec/")
    assert ref.startswith("static/rec/")
    assert recording_path(ref, str(tmp_path), url_prefix="static/rec").exists()


def test_delete_recording(tmp_path):
    ref = save_recording(io.BytesIO(b"v"), "a.mp4", "video/mp4", str(tmp_path), 10)
    assert delete_recording(ref, str(tmp_path)) is True
    assert list(tmp_path.iterdir()) == []
    assert delete_recording(ref, str(tmp_path)) is False


@pytest.mark.parametrize(
    "ref", ["https://cdn.example.com/rec/1.webm", "uploads/../secret", "other/a.mp4", "uploads/"]
)
def test_non_local_references_have_no_path(tmp_path, ref):
    assert recording_path(ref, str(tmp_path)) is None
    assert delete_recording(ref, str(tmp_path)) is False
