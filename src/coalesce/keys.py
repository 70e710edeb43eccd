"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Key derivation for lock and result records.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass

DEFAULT_LOCK_PREFIX = "coalesce:inflight"
DEFAULT_RESULT_PREFIX = "coalesce:result"


def check_prefixes(lock_prefix: str, result_prefix: str) -> None:
    """
    Reject prefix pairs whose keys could collide.

    Keys are `"{prefix}:{subject}"`, so the namespaces overlap whenever one
    `prefix:` starts with the other.
    """
    if not lock_prefix.strip() or not result_prefix.strip():
        raise ValueError("key prefixes must be non-empty")
    lock_ns = f"{lock_prefix}:"
    result_ns = f"{result_prefix}:"
    if lock_ns.startswith(result_ns) or result_ns.startswith(lock_ns):
        raise ValueError(
            f"lock prefix '{lock_prefix}' and result prefix '{result_prefix}' overlap"
        )


@dataclass(frozen=True, slots=True)
class CoalescerKeys:
    """Deterministic key builder for one lock/result namespace pair."""

    lock_prefix: str = DEFAULT_LOCK_PREFIX
    result_prefix: str = DEFAULT_RESULT_PREFIX

    def __post_init__(self) -> None:
        check_prefixes(self.lock_prefix, self.result_prefix)

    def lock_key(self, subject_id: str) -> str:
        return f"{self.lock_prefix}:{subject_id}"

    def result_key(self, subject_id: str) -> str:
        return f"{self.result_prefix}:{subject_id}"


def scoped_subject(subject_id: str, scope: str, variants: Iterable[str] = ()) -> str:
    """
    Build a subject id for one variant of a computation on the same entity.

    Variant order does not matter: `["b", "a"]` and `["a", "b"]` map to the
    same subject.

    Example::

        scoped_subject("t2_abc", "questions", ["dating", "age"])
        # -> "t2_abc:questions:<16 hex chars>"
    """
    scope = scope.strip()
    if not scope:
        raise ValueError("scope must be non-empty")
    joined = ",".join(sorted(variants))
    digest = hashlib.sha256(joined.encode("utf-8")).hexdigest()[:16]
    return f"{subject_id}:{scope}:{digest}"
