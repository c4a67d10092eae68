"""Helper utilities."""

import hashlib
import math
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, TypeVar

T = TypeVar("T")

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_code(prefix: str, length: int = 8) -> str:
    """Generate a human-readable business code such as ``CMP-7K2Q9XJD``."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


def generate_hash(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode()).hexdigest()


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for storage."""
    # Remove special characters
    sanitized = re.sub(r"[^\w\s.-]", "", filename)
    # Replace spaces with underscores
    sanitized = re.sub(r"\s+", "_", sanitized)
    return sanitized[:255]  # Limit length


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    chunk: List[T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) == size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def estimate_tokens(text: str) -> int:
    """Rough token estimate (1.3 tokens per word) used when a provider reports no usage."""
    if not text:
        return 0
    return math.ceil(len(text.split()) * 1.3)
