# Overview: Binary object storage for rendered invoice PDFs.

from __future__ import annotations

import os
import tempfile

from flask import current_app


class StorageError(Exception):
    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details or {}


class ObjectStorage:
    """put(key, data) -> url and get(key) -> bytes, keyed by a relative path."""

    def put(self, key: str, data: bytes) -> str:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """
    Files under a root directory.

    Writes go to a temp file in the same directory and are renamed into
    place, so readers never see a half-written PDF and a re-render replaces
    the previous file under the same key.
    """

    def __init__(self, root: str, url_prefix: str = "/uploads"):
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix.rstrip("/")

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise StorageError("Invalid storage key", details={"key": key})
        return path

    def url_for(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def put(self, key: str, data: bytes) -> str:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError("Failed to store object", details={"key": key}) from exc
        return self.url_for(key)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError as exc:
            raise StorageError("Object not found", details={"key": key}) from exc

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))


def invoice_pdf_key(org_id: int, invoice_id: int) -> str:
    return f"invoices/{org_id}/{invoice_id}.pdf"


def get_storage() -> ObjectStorage:
    """Storage configured on the current app (tests may swap it out)."""
    storage = current_app.extensions.get("invoice_storage")
    if storage is None:
        root = current_app.config.get("INVOICE_STORAGE_DIR") or os.path.join(
            current_app.instance_path, "invoice-files"
        )
        storage = LocalObjectStorage(root, current_app.config.get("INVOICE_STORAGE_URL_PREFIX", "/uploads"))
        current_app.extensions["invoice_storage"] = storage
    return storage
