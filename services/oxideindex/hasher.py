"""
Identity keys for indexed plugin files.

An indexed file is identified by the triple
(repository full name, file path, content hash). The content hash is the git
blob SHA-1 GitHub reports for the file, so files found by code search and
files scanned from a local clone share the same identity.
"""

from __future__ import annotations

import hashlib


KEY_SEPARATOR = "#"


def identity_key(full_name: str, path: str, sha: str) -> str:
    """Build the dedup key for a (repository, path, content hash) triple."""
    return f"{full_name}{KEY_SEPARATOR}{path}{KEY_SEPARATOR}{sha}"


def location_key(full_name: str, path: str) -> str:
    """Repository + path, ignoring content. Used to detect edited files."""
    return f"{full_name}{KEY_SEPARATOR}{path}"


def git_blob_sha(data: bytes) -> str:
    """
    Compute the git blob SHA-1 of raw file bytes.

    Matches `git hash-object` and the `sha` field of GitHub's contents and
    code-search APIs.
    """
    header = f"blob {len(data)}\0".encode("utf-8")
    return hashlib.sha1(header + data).hexdigest()
