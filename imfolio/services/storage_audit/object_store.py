"""
Object Store Backends

Unified interface over the bucket holding photo, hero and profile images:
- S3ObjectStore: S3-compatible storage via aiobotocore (production)
- LocalObjectStore: a directory on disk (development, tests, S3 not configured)

Every call returns a tagged StoreResult; nothing here raises for an
individual missing key or a failed request. The caller owns the lifetime
of a store: use ``async with store:`` around a batch of calls.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import islice
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from imfolio.config import Settings, get_settings
from imfolio.core.keys import guess_content_type
from imfolio.models.contracts.storage import StorageObject
from imfolio.services.storage_audit.results import (
    NotFound,
    Ok,
    PermissionDenied,
    StoreResult,
    TransientError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_DENIED_CODES = frozenset({
    "AccessDenied",
    "403",
    "Forbidden",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "AllAccessDisabled",
})


@dataclass(frozen=True)
class ListPage:
    """One page of a listing."""

    objects: list[StorageObject] = field(default_factory=list)
    next_token: str | None = None


class ObjectStore(ABC):
    """Abstract key-value object store."""

    async def open(self) -> None:
        """Acquire connections. Safe to call more than once."""

    async def close(self) -> None:
        """Release connections."""

    async def __aenter__(self) -> "ObjectStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abstractmethod
    async def list_page(
        self,
        prefix: str,
        continuation_token: str | None = None,
        page_size: int = 1000,
    ) -> StoreResult:
        """List one page of objects under a prefix. Ok value is a ListPage."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> StoreResult:
        """Check whether a key exists. Ok value is a bool."""
        ...

    @abstractmethod
    async def download(self, key: str) -> StoreResult:
        """Download the full object. Ok value is bytes."""
        ...

    @abstractmethod
    async def upload(self, key: str, content: bytes, content_type: str | None = None) -> StoreResult:
        """Write an object. Ok value is the key."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> StoreResult:
        """Delete an object. Ok value is True."""
        ...


def classify_client_error(error: Exception, key: str) -> StoreResult:
    """Map a botocore exception onto a tagged result."""
    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        status = str(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
        message = error.response.get("Error", {}).get("Message") or str(error)
        if code in _NOT_FOUND_CODES or status == "404":
            return NotFound(key)
        if code in _DENIED_CODES or status == "403":
            return PermissionDenied(key, f"{code}: {message}")
        return TransientError(key, f"{code or status}: {message}")
    return TransientError(key, f"{type(error).__name__}: {error}")


class S3ObjectStore(ObjectStore):
    """S3-compatible object store."""

    def __init__(self, settings: Settings | None = None, bucket: str | None = None):
        self._settings = settings or get_settings()
        self._bucket: str = bucket or self._settings.s3_bucket or ""
        self._client = None
        self._exit_stack: AsyncExitStack | None = None

    async def open(self) -> None:
        if self._client is not None:
            return

        from aiobotocore.config import AioConfig
        from aiobotocore.session import get_session

        session = get_session()
        stack = AsyncExitStack()
        self._client = await stack.enter_async_context(
            session.create_client(
                "s3",
                endpoint_url=self._settings.s3_endpoint_url,
                aws_access_key_id=self._settings.s3_access_key,
                aws_secret_access_key=self._settings.s3_secret_key,
                region_name=self._settings.s3_region,
                # Retries are handled by call_with_retry
                config=AioConfig(retries={"total_max_attempts": 1}),
            )
        )
        self._exit_stack = stack

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None

    def _require_client(self):
        if self._client is None:
            raise RuntimeError("S3ObjectStore used outside 'async with' block")
        return self._client

    async def list_page(
        self,
        prefix: str,
        continuation_token: str | None = None,
        page_size: int = 1000,
    ) -> StoreResult:
        client = self._require_client()
        kwargs = {"Bucket": self._bucket, "Prefix": prefix, "MaxKeys": page_size}
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token

        try:
            response = await client.list_objects_v2(**kwargs)
        except (ClientError, BotoCoreError, OSError) as e:
            return classify_client_error(e, prefix)

        objects = [
            StorageObject.from_listing(
                key=obj["Key"],
                size_bytes=obj.get("Size"),
                last_modified=obj["LastModified"],
            )
            for obj in response.get("Contents", [])
        ]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return Ok(ListPage(objects=objects, next_token=next_token))

    async def exists(self, key: str) -> StoreResult:
        client = self._require_client()
        try:
            await client.head_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError, OSError) as e:
            result = classify_client_error(e, key)
            if isinstance(result, NotFound):
                return Ok(False)
            return result
        return Ok(True)

    async def download(self, key: str) -> StoreResult:
        client = self._require_client()
        try:
            response = await client.get_object(Bucket=self._bucket, Key=key)
            content = await response["Body"].read()
        except (ClientError, BotoCoreError, OSError) as e:
            return classify_client_error(e, key)
        return Ok(content)

    async def upload(self, key: str, content: bytes, content_type: str | None = None) -> StoreResult:
        client = self._require_client()
        try:
            await client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=content,
                ContentType=content_type or guess_content_type(key),
            )
        except (ClientError, BotoCoreError, OSError) as e:
            return classify_client_error(e, key)
        logger.debug(f"Object written: {key} ({len(content)} bytes)")
        return Ok(key)

    async def delete(self, key: str) -> StoreResult:
        client = self._require_client()
        try:
            await client.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError, OSError) as e:
            return classify_client_error(e, key)
        logger.debug(f"Object deleted: {key}")
        return Ok(True)


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store rooted at a directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, key: str) -> Path | None:
        """Resolve a key to a path inside the root, None if it escapes."""
        root = self.root.resolve()
        path = (root / key).resolve()
        if path != root and root not in path.parents:
            return None
        return path

    def _iter_keys(self, directory: Path, base: str, prefix: str, start_after: str | None) -> Iterator[str]:
        """
        Yield keys below `directory` in key order.

        A directory sorts as ``name/``, so its keys come out exactly where a
        flat sorted listing would put them. Subtrees that cannot hold a key
        matching `prefix`, or that lie entirely before `start_after`, are
        not entered.
        """
        entries = sorted(
            (f"{base}{path.name}/" if path.is_dir() else f"{base}{path.name}", path)
            for path in directory.iterdir()
        )
        for key, path in entries:
            if key.endswith("/"):
                if not (key.startswith(prefix) or prefix.startswith(key)):
                    continue
                if start_after is not None and key < start_after and not start_after.startswith(key):
                    continue
                yield from self._iter_keys(path, key, prefix, start_after)
            elif key.startswith(prefix) and (start_after is None or key > start_after):
                yield key

    def _list_sync(self, prefix: str, start_after: str | None, page_size: int) -> ListPage:
        base = prefix.rsplit("/", 1)[0] + "/" if "/" in prefix else ""
        if any(part in ("", ".", "..") for part in base.split("/")[:-1]):
            return ListPage()
        directory = self._resolve(base) if base else self.root
        if directory is None or not directory.is_dir():
            return ListPage()

        keys = list(islice(self._iter_keys(directory, base, prefix, start_after), page_size + 1))
        page_keys = keys[:page_size]
        objects = []
        for key in page_keys:
            stat = (self.root / key).stat()
            objects.append(
                StorageObject.from_listing(
                    key=key,
                    size_bytes=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        next_token = page_keys[-1] if len(keys) > page_size else None
        return ListPage(objects=objects, next_token=next_token)

    async def list_page(
        self,
        prefix: str,
        continuation_token: str | None = None,
        page_size: int = 1000,
    ) -> StoreResult:
        try:
            page = await asyncio.to_thread(self._list_sync, prefix, continuation_token, page_size)
        except PermissionError as e:
            return PermissionDenied(prefix, str(e))
        except OSError as e:
            return TransientError(prefix, str(e))
        return Ok(page)

    async def exists(self, key: str) -> StoreResult:
        path = self._resolve(key)
        if path is None:
            return PermissionDenied(key, "key escapes storage root")
        return Ok(await asyncio.to_thread(path.is_file))

    async def download(self, key: str) -> StoreResult:
        path = self._resolve(key)
        if path is None:
            return PermissionDenied(key, "key escapes storage root")
        try:
            return Ok(await asyncio.to_thread(path.read_bytes))
        except (FileNotFoundError, IsADirectoryError):
            return NotFound(key)
        except PermissionError as e:
            return PermissionDenied(key, str(e))
        except OSError as e:
            return TransientError(key, str(e))

    def _write_sync(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def upload(self, key: str, content: bytes, content_type: str | None = None) -> StoreResult:
        path = self._resolve(key)
        if path is None:
            return PermissionDenied(key, "key escapes storage root")
        try:
            await asyncio.to_thread(self._write_sync, path, content)
        except PermissionError as e:
            return PermissionDenied(key, str(e))
        except OSError as e:
            return TransientError(key, str(e))
        return Ok(key)

    def _delete_sync(self, path: Path) -> None:
        path.unlink(missing_ok=True)
        # Prune folders left empty by the delete
        root = self.root.resolve()
        parent = path.parent
        while parent != root and root in parent.parents:
            try:
                os.rmdir(parent)
            except OSError:
                break
            parent = parent.parent

    async def delete(self, key: str) -> StoreResult:
        path = self._resolve(key)
        if path is None:
            return PermissionDenied(key, "key escapes storage root")
        try:
            await asyncio.to_thread(self._delete_sync, path)
        except PermissionError as e:
            return PermissionDenied(key, str(e))
        except OSError as e:
            return TransientError(key, str(e))
        return Ok(True)


def get_object_store(settings: Settings | None = None) -> ObjectStore:
    """Build the configured object store (S3 when configured, else local disk)."""
    settings = settings or get_settings()
    if settings.s3_configured:
        return S3ObjectStore(settings)
    logger.info(f"S3 not configured, using local object store at {settings.local_storage_root}")
    return LocalObjectStore(settings.local_storage_root)
