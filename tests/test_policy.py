import pytest

from file_uploader.config import DEFAULT_ALLOWED_MIME, Settings
from file_uploader.errors import FileTooLarge, UnsupportedFileType
from file_uploader.policy import UploadPolicy


def test_blank_allow_list_falls_back_to_defaults(monkeypatch):
    monkeypatch.setenv("ALLOWED_MIME", " , ")
    assert Settings().allowed_mime_types == frozenset(DEFAULT_ALLOWED_MIME)


def test_allow_list_and_size_from_environment(monkeypatch):
    monkeypatch.setenv("ALLOWED_MIME", "text/csv,application/zip")
    monkeypatch.setenv("MAX_FILE_SIZE", "2048")

    policy = UploadPolicy.from_settings(Settings())

    assert policy.allowed_types == {"text/csv", "application/zip"}
    assert policy.max_size == 2048


def test_validate_checks_type_before_size():
    policy = UploadPolicy(max_size=10)
    with pytest.raises(UnsupportedFileType):
        policy.validate("application/zip", 100)
    with pytest.raises(FileTooLarge) as too_large:
        policy.validate("image/png", 11)
    assert too_large.value.status_code == 400
    policy.validate("image/png", 10)
