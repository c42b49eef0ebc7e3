"""Input policy for bucket names, object keys, content and content types."""

import re
from typing import Optional

from objectstore.errors import InvalidInput

BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
# type/subtype with optional ;param=value pairs (RFC 6838 restricted-name chars)
_TOKEN = r"[A-Za-z0-9][A-Za-z0-9!#$&^_.+\-]{0,126}"
CONTENT_TYPE_RE = re.compile(
    rf"^{_TOKEN}/{_TOKEN}(\s*;\s*{_TOKEN}=(\"[^\"]*\"|[^;\s]+))*\s*$"
)
MAX_KEY_LENGTH = 1024
MAX_METADATA_KEY_LENGTH = 255


def validate_bucket_name(name: str) -> str:
    if not isinstance(name, str) or not BUCKET_NAME_RE.match(name):
        raise InvalidInput(f"Invalid bucket name: {name!r}", field="bucket", code="InvalidBucketName")
    if ".." in name:
        raise InvalidInput(f"Bucket name may not contain '..': {name!r}", field="bucket", code="InvalidBucketName")
    return name


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidInput("Object key must be a non-empty string", field="key")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidInput(f"Object key longer than {MAX_KEY_LENGTH} characters", field="key", code="KeyTooLong")
    if "\x00" in key or key.startswith("/"):
        raise InvalidInput(f"Invalid object key: {key!r}", field="key")
    return key


def validate_content(content: bytes, max_size: int) -> bytes:
    if not isinstance(content, (bytes, bytearray, memoryview)):
        raise InvalidInput("Content must be bytes", field="content")
    content = bytes(content)
    if not content:
        raise InvalidInput("Content must not be empty", field="content")
    if len(content) > max_size:
        raise InvalidInput(
            f"Content of {len(content)} bytes exceeds the limit of {max_size}",
            field="content",
            code="EntityTooLarge",
        )
    return content


def validate_content_length(declared: Optional[str], max_size: int) -> None:
    """Reject an upload from its Content-Length header before the body is read."""
    if declared is None or not declared.strip().isdigit():
        return
    if int(declared) > max_size:
        raise InvalidInput(
            f"Declared length of {declared.strip()} bytes exceeds the limit of {max_size}",
            field="content",
            code="EntityTooLarge",
        )


def validate_content_type(content_type: str) -> str:
    if not isinstance(content_type, str) or not CONTENT_TYPE_RE.match(content_type.strip()):
        raise InvalidInput(f"Malformed content type: {content_type!r}", field="content_type")
    return content_type.strip()


def validate_metadata_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise InvalidInput("Metadata key must be a non-empty string", field="metadata")
    if len(key) > MAX_METADATA_KEY_LENGTH:
        raise InvalidInput(
            f"Metadata key longer than {MAX_METADATA_KEY_LENGTH} characters", field="metadata"
        )
    return key
