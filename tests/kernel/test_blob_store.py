"""Tests for LocalBlobStore."""

import pytest

from acredita_kernel.exceptions import BlobNotFoundError, StorageError
from acredita_kernel.storage.blob_store import LocalBlobStore


def test_put_read_and_exists(blob_store):
    path = blob_store.put("credentials/images/a.png", b"png-bytes")

    assert path == "credentials/images/a.png"
    assert blob_store.exists(path)
    assert blob_store.read(path) == b"png-bytes"
    assert blob_store.local_path(path).is_file()


def test_put_overwrites(blob_store):
    blob_store.put("print_batches/b.pdf", b"first")
    blob_store.put("print_batches/b.pdf", b"second")
    assert blob_store.read("print_batches/b.pdf") == b"second"
    assert not any(p.name.endswith(".tmp") for p in blob_store.root.rglob("*"))


def test_delete_reports_whether_removed(blob_store):
    blob_store.put("x/y.bin", b"1")
    assert blob_store.delete("x/y.bin") is True
    assert blob_store.delete("x/y.bin") is False
    assert blob_store.delete(None) is False


def test_exists_handles_empty_paths(blob_store):
    assert blob_store.exists(None) is False
    assert blob_store.exists("") is False


def test_read_missing(blob_store):
    with pytest.raises(BlobNotFoundError) as exc_info:
        blob_store.read("nope.png")
    assert exc_info.value.code == "BLOB_NOT_FOUND"


@pytest.mark.parametrize("path", ["../escape.txt", "a/../../escape.txt"])
def test_rejects_paths_outside_root(blob_store, path):
    with pytest.raises(StorageError):
        blob_store.put(path, b"x")


def test_url(tmp_path):
    store = LocalBlobStore(tmp_path, base_url="https://cdn.example.org/media/")
    assert store.url("/credentials/pdf/c.pdf") == "https://cdn.example.org/media/credentials/pdf/c.pdf"
