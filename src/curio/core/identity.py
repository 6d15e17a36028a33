"""Identity utilities for deterministic IDs.

- candidate_id: deterministic hash of the normalized source URL
- run_id: unique batch run identifier
- reference_digest: short stable digest of an image reference
"""

import hashlib
import uuid
from urllib.parse import urlsplit, urlunsplit


def normalize_source_url(source_url: str) -> str:
    """Normalize a source URL for uniqueness checks.

    Lower-cases scheme and host, drops the fragment and any trailing slash
    on the path. Query strings are kept: image CDNs encode variants there.

    Args:
        source_url: URL as returned by the source.

    Returns:
        Normalized URL string.

    Examples:
        >>> normalize_source_url("HTTPS://Example.com/img/1/#top")
        'https://example.com/img/1'
    """
    parts = urlsplit(source_url.strip())
    path = parts.path.rstrip("/") if parts.path != "/" else parts.path
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def compute_candidate_id(source_url: str) -> str:
    """Compute deterministic candidate_id.

    candidate_id = sha256(normalized source_url)[:32]

    The same URL always maps to the same id, so re-discovery of a known
    image resolves to the existing record.

    Args:
        source_url: Source URL of the candidate image.

    Returns:
        32-character hex string.
    """
    normalized = normalize_source_url(source_url)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]


def new_run_id() -> str:
    """Generate a fresh batch run id."""
    return str(uuid.uuid4())


def reference_digest(image_ref: str, salt: str = "") -> int:
    """Derive a stable 32-bit integer from an image reference.

    Used by deterministic collaborators to derive repeatable outputs.

    Args:
        image_ref: Image URL or other reference string.
        salt: Optional salt so different collaborators diverge.

    Returns:
        Unsigned 32-bit integer.
    """
    return int.from_bytes(
        hashlib.sha256(f"{salt}|{image_ref}".encode("utf-8")).digest()[:4],
        byteorder="big",
    )
