"""
Content Hasher

SHA-256 digest of a stored object, used to group orphaned duplicates and
to detect content drift on matched records.
"""

import hashlib
from dataclasses import dataclass
from typing import Union

from imfolio.services.storage_audit.object_store import ObjectStore
from imfolio.services.storage_audit.results import Ok, describe
from imfolio.services.storage_audit.retry import RetryPolicy, call_with_retry

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class HashOk:
    key: str
    digest: str
    size_bytes: int


@dataclass(frozen=True)
class HashFailed:
    key: str
    reason: str


HashResult = Union[HashOk, HashFailed]


def compute_sha256(content: bytes, chunk_size: int = CHUNK_SIZE) -> str:
    """Hex SHA-256 of `content`, fed to the digest in fixed-size chunks."""
    digest = hashlib.sha256()
    view = memoryview(content)
    for offset in range(0, len(view), chunk_size):
        digest.update(view[offset:offset + chunk_size])
    return digest.hexdigest()


class ContentHasher:
    """Downloads objects and hashes them; never raises for a single key."""

    def __init__(self, store: ObjectStore, retry_policy: RetryPolicy | None = None):
        self._store = store
        self._retry = retry_policy or RetryPolicy()

    async def hash(self, key: str) -> HashResult:
        result = await call_with_retry(
            lambda: self._store.download(key),
            key,
            self._retry,
            description="download",
        )
        if isinstance(result, Ok):
            content: bytes = result.value
            return HashOk(key=key, digest=compute_sha256(content), size_bytes=len(content))
        return HashFailed(key=key, reason=describe(result))
