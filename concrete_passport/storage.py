"""
Off-chain content stores.

Passports carry only locators; the documents themselves (test reports,
G-code, mix designs, batch certificates) live in a content store. The
registry never resolves or parses a locator, so any of these backends can be
swapped without touching registry state.

Backends:
- InMemoryContentStore: tests and development
- FileContentStore: files under a root directory named by SHA-256
- HttpContentStore: IPFS HTTP API (add) plus a read gateway
- S3ContentStore: S3 objects keyed by SHA-256
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

from .canonicalization import canonicalize
from .hashing import content_locator, locator_digest, sha256_hex


class ContentNotFound(KeyError):
    """No payload stored under the locator."""


class ContentStore(ABC):

    @abstractmethod
    def put(self, payload: bytes) -> str:
        """Store a payload and return its locator."""
        pass

    @abstractmethod
    def get(self, locator: str) -> bytes:
        pass

    @abstractmethod
    def exists(self, locator: str) -> bool:
        pass

    def put_json(self, obj: Any) -> str:
        """Store an object as canonical JSON."""
        return self.put(canonicalize(obj))

    def get_json(self, locator: str) -> Any:
        return json.loads(self.get(locator).decode("utf-8"))


def _digest_or_raise(locator: str) -> str:
    digest = locator_digest(locator)
    if digest is None:
        raise ContentNotFound(locator)
    return digest


class InMemoryContentStore(ContentStore):

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, payload: bytes) -> str:
        locator = content_locator(payload)
        with self._lock:
            self._blobs[locator] = bytes(payload)
        return locator

    def get(self, locator: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[locator]
            except KeyError:
                raise ContentNotFound(locator) from None

    def exists(self, locator: str) -> bool:
        with self._lock:
            return locator in self._blobs


class FileContentStore(ContentStore):
    """Content files stored as ``<root>/<sha256>``; writes are atomic renames."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, digest: str) -> Path:
        return self.root / digest

    def put(self, payload: bytes) -> str:
        digest = sha256_hex(payload)
        path = self._path(digest)
        if not path.exists():
            with tempfile.NamedTemporaryFile(dir=self.root, prefix=f".{digest}.", delete=False) as tmp:
                tmp.write(payload)
            try:
                os.replace(tmp.name, path)
            except OSError:
                os.unlink(tmp.name)
                raise
        return content_locator(payload)

    def get(self, locator: str) -> bytes:
        path = self._path(_digest_or_raise(locator))
        if not path.exists():
            raise ContentNotFound(locator)
        return path.read_bytes()

    def exists(self, locator: str) -> bool:
        digest = locator_digest(locator)
        return digest is not None and self._path(digest).exists()


class HttpContentStore(ContentStore):
    """
    IPFS through its HTTP API.

    Locators are ``ipfs://<cid>``. Uploads go to ``<api_url>/api/v0/add``;
    reads go through ``<gateway_url>/ipfs/<cid>``.
    """

    PREFIX = "ipfs://"

    def __init__(
        self,
        api_url: str,
        gateway_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateway_url = (gateway_url or api_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _cid(self, locator: str) -> str:
        if not locator.startswith(self.PREFIX) or len(locator) == len(self.PREFIX):
            raise ContentNotFound(locator)
        return locator[len(self.PREFIX):]

    def put(self, payload: bytes) -> str:
        resp = self.session.post(
            f"{self.api_url}/api/v0/add",
            files={"file": ("blob", payload)},
            params={"pin": "true", "cid-version": "1"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return f"{self.PREFIX}{resp.json()['Hash']}"

    def get(self, locator: str) -> bytes:
        resp = self.session.get(f"{self.gateway_url}/ipfs/{self._cid(locator)}", timeout=self.timeout)
        if resp.status_code == 404:
            raise ContentNotFound(locator)
        resp.raise_for_status()
        return resp.content

    def exists(self, locator: str) -> bool:
        try:
            cid = self._cid(locator)
        except ContentNotFound:
            return False
        resp = self.session.head(f"{self.gateway_url}/ipfs/{cid}", timeout=self.timeout)
        return resp.status_code == 200


class S3ContentStore(ContentStore):
    """S3 objects under ``<prefix><sha256>``; locators stay ``content:sha256:`` form."""

    def __init__(self, bucket: str, prefix: str = "concrete-passport/content/", client=None):
        if client is None:
            import boto3
            client = boto3.client("s3")
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.client = client

    def _key(self, digest: str) -> str:
        return f"{self.prefix}{digest}"

    def put(self, payload: bytes) -> str:
        digest = sha256_hex(payload)
        self.client.put_object(
            Bucket=self.bucket,
            Key=self._key(digest),
            Body=payload,
            ContentType="application/octet-stream",
        )
        return content_locator(payload)

    def get(self, locator: str) -> bytes:
        from botocore.exceptions import ClientError

        key = self._key(_digest_or_raise(locator))
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise ContentNotFound(locator) from e
            raise
        return obj["Body"].read()

    def exists(self, locator: str) -> bool:
        from botocore.exceptions import ClientError

        digest = locator_digest(locator)
        if digest is None:
            return False
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(digest))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound"):
                return False
            raise
        return True


def get_content_store() -> ContentStore:
    backend = os.getenv("CONTENT_STORE_BACKEND", "memory")
    if backend == "file":
        return FileContentStore(os.getenv("CONTENT_STORE_ROOT", "./data/content"))
    if backend == "ipfs":
        return HttpContentStore(
            api_url=os.getenv("IPFS_API_URL", "http://127.0.0.1:5001"),
            gateway_url=os.getenv("IPFS_GATEWAY_URL") or None,
        )
    if backend == "s3":
        return S3ContentStore(
            bucket=os.environ["S3_BUCKET"],
            prefix=os.getenv("S3_PREFIX", "concrete-passport/content/"),
        )
    if backend != "memory":
        raise ValueError(f"unknown CONTENT_STORE_BACKEND: {backend}")
    return InMemoryContentStore()
