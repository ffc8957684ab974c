"""
Hashing and identifier utilities.

Provides content digests for verifying copied documents and generation of
document identifiers for newly created records.
"""

import hashlib
import itertools
import json
import secrets
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from typing import Any


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def document_hash(document: dict[str, Any], algorithm: str = "sha256") -> str:
    """
    Compute a stable hash of a single document.

    Args:
        document: Document to hash.
        algorithm: Hash algorithm to use.

    Returns:
        Hex digest of the canonical JSON form of the document.
    """
    canonical = json.dumps(document, sort_keys=True, default=_json_default)

    hash_func = hashlib.new(algorithm)
    hash_func.update(canonical.encode("utf-8"))

    return hash_func.hexdigest()


def compute_documents_digest(
    documents: Iterable[dict[str, Any]], algorithm: str = "sha256"
) -> str:
    """
    Compute an order-insensitive digest over a set of documents.

    Args:
        documents: Documents to hash.
        algorithm: Hash algorithm to use.

    Returns:
        Hex digest of the sorted per-document hashes.
    """
    hashes = sorted(document_hash(doc, algorithm) for doc in documents)

    hash_func = hashlib.new(algorithm)
    hash_func.update("|".join(hashes).encode("utf-8"))

    return hash_func.hexdigest()


# Per-process random part and counter, as in a MongoDB ObjectId.
_PROCESS_RANDOM = secrets.token_bytes(5)
_counter = itertools.count(secrets.randbelow(0xFFFFFF))
_counter_lock = threading.Lock()


def generate_object_id(now: float | None = None) -> str:
    """
    Generate a new document identifier laid out like a MongoDB ObjectId.

    The first 4 bytes are the creation time in seconds, followed by a
    5-byte per-process random value and a 3-byte counter. Ids from one
    process therefore sort by creation time; within one second they follow
    the counter, which wraps after 16,777,216 ids.

    Args:
        now: Creation time as a POSIX timestamp; defaults to the current time.

    Returns:
        24 character hex string, the same shape as legacy document ids.
    """
    seconds = int(time.time() if now is None else now) & 0xFFFFFFFF
    with _counter_lock:
        count = next(_counter) & 0xFFFFFF

    return (seconds.to_bytes(4, "big") + _PROCESS_RANDOM + count.to_bytes(3, "big")).hex()
