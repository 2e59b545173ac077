"""
Storage key namespace.

Every object key is ``<category>/<ownerId>/<filename>``. ``build_key`` and
``parse_key`` are the only places keys are produced or taken apart; nothing
else may split a key on "/" to guess its owner.

Global hero images live under the reserved owner segment ``global``.
The filename part may itself contain "/" (e.g. ``2024/05/1715-ab12.jpg``).
"""

import mimetypes
from dataclasses import dataclass

from imfolio.core.exceptions import InvalidStorageKey
from imfolio.models.enums import ImageCategory

GLOBAL_OWNER = "global"

_CATEGORY_VALUES = frozenset(c.value for c in ImageCategory)


@dataclass(frozen=True)
class KeyParts:
    """Components of a parsed storage key."""

    category: ImageCategory
    owner_segment: str
    filename: str

    @property
    def owner_id(self) -> str | None:
        """Owner user id, or None for globally scoped objects."""
        if self.owner_segment == GLOBAL_OWNER:
            return None
        return self.owner_segment

    @property
    def key(self) -> str:
        return f"{self.category.value}/{self.owner_segment}/{self.filename}"


def _check_segment(value: str, name: str) -> None:
    if not value or value in (".", ".."):
        raise InvalidStorageKey(f"{name} must not be empty")
    if "/" in value:
        raise InvalidStorageKey(f"{name} must not contain '/': {value!r}")


def key_prefix(category: ImageCategory | str, owner_id: str | None) -> str:
    """
    Build the ``<category>/<owner>/`` prefix every key of one owner starts with.

    Raises:
        InvalidStorageKey: If the category is unknown or the owner id is malformed
    """
    try:
        category = ImageCategory(category)
    except ValueError:
        raise InvalidStorageKey(f"Unknown image category: {category!r}") from None

    if owner_id is None:
        if category != ImageCategory.HERO:
            raise InvalidStorageKey(f"{category.value} images must have an owner")
        owner_segment = GLOBAL_OWNER
    else:
        owner_segment = str(owner_id)
        _check_segment(owner_segment, "owner id")
        if owner_segment == GLOBAL_OWNER:
            raise InvalidStorageKey(f"'{GLOBAL_OWNER}' is reserved and cannot be an owner id")

    return f"{category.value}/{owner_segment}/"


def build_key(category: ImageCategory | str, owner_id: str | None, filename: str) -> str:
    """
    Build the storage key for an object.

    Args:
        category: Image category (photo, hero, profile)
        owner_id: Owning user id; None only for global hero images
        filename: File name, optionally with sub-folders

    Raises:
        InvalidStorageKey: If any component is empty or malformed
    """
    prefix = key_prefix(category, owner_id)

    filename = filename.strip("/")
    if not filename or any(part in ("", ".", "..") for part in filename.split("/")):
        raise InvalidStorageKey(f"Invalid filename: {filename!r}")

    return f"{prefix}{filename}"


def parse_key(key: str) -> KeyParts | None:
    """
    Parse a storage key into its components.

    Returns None for keys outside the namespace (unknown category, missing
    owner or filename, empty path segments). Such keys are reported, never
    guessed at.
    """
    if not key or key.startswith("/"):
        return None

    parts = key.split("/", 2)
    if len(parts) != 3:
        return None

    category, owner_segment, filename = parts
    if category not in _CATEGORY_VALUES or not owner_segment or owner_segment in (".", ".."):
        return None
    if not filename or any(part in ("", ".", "..") for part in filename.split("/")):
        return None

    parsed = KeyParts(
        category=ImageCategory(category),
        owner_segment=owner_segment,
        filename=filename,
    )
    if parsed.owner_segment == GLOBAL_OWNER and parsed.category != ImageCategory.HERO:
        return None
    return parsed


def owner_prefixes(owner_id: str) -> list[str]:
    """List prefixes covering every category for one owner."""
    return [key_prefix(category, owner_id) for category in ImageCategory]


def guess_content_type(key: str) -> str:
    """Guess content type from the key's extension."""
    content_type, _ = mimetypes.guess_type(key)
    return content_type or "application/octet-stream"


def matches_prefix(key: str, prefixes: list[str] | tuple[str, ...]) -> bool:
    """Check whether a key falls under any of the given prefixes."""
    return any(key.startswith(prefix) for prefix in prefixes if prefix)
