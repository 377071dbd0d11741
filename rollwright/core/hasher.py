"""Canonical hashing helpers for the rollout history chain."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Sorted-key, compact, ASCII-only JSON encoded as UTF-8."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def compute_record_hash(record_dict: dict[str, Any]) -> str:
    """SHA-256 of a JSON-mode record dump, excluding ``record_hash`` itself.

    ``previous_record_hash`` is part of the hashed content, which is what
    links each record to its predecessor.
    """
    payload = {k: v for k, v in record_dict.items() if k != "record_hash"}
    return hashlib.sha256(canonical_json_bytes(payload)).hexdigest()
