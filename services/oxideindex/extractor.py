"""
Heuristic plugin metadata extraction from Oxide/uMod C# sources.

Sources tried, most specific first:
1. [Info(...)] attribute, named (Title: "X", Author = "Y") or positional
2. /* Plugin: X, Author: Y, Version: Z, Resource: R */ comment header
3. class X : RustPlugin / CovalencePlugin
4. file name

Extraction never fails an item: it only falls back to something less
specific. A missing author becomes the repository owner.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional


PLUGIN_BASE_TYPES = ("RustPlugin", "CovalencePlugin")

_VALUE = r"""(?:"([^"]*)"|'([^']*)'|([^,\s)]+))"""

INFO_BLOCK_RE = re.compile(r"\[Info\s*\([^)]*\)\]", re.IGNORECASE)
POSITIONAL_INFO_RE = re.compile(
    r"\[Info\s*\(\s*" + _VALUE
    + r"\s*(?:,\s*" + _VALUE + r")?"
    + r"\s*(?:,\s*" + _VALUE + r")?"
    + r"\s*(?:,\s*" + _VALUE + r")?"
    + r"\s*[,)]",
    re.IGNORECASE,
)
DESCRIPTION_RE = re.compile(r"""\[Description\s*\(\s*(?:"([^"]*)"|'([^']*)')\s*\)\]""", re.DOTALL)
COMMENT_INFO_RE = re.compile(
    r"/\*\*?\s*Plugin:\s*([^,\n]+)"
    r"(?:,\s*Author:\s*([^,\n]+))?"
    r"(?:,\s*Version:\s*([^,\n]+))?"
    r"(?:,\s*Resource:\s*([^\n]+?))?"
    r"\s*\*\*?/"
)
PLUGIN_CLASS_RE = re.compile(
    r"class\s+(\w+)\s*:\s*(?:[\w.]+\s*,\s*)*(?:Oxide\.Plugins\.)?(" + "|".join(PLUGIN_BASE_TYPES) + r")\b"
)
NAMESPACE_RE = re.compile(r"namespace\s+Oxide\.Plugins\b")

_JUNK_VALUES = {"", "0", "null", "undefined", "(", ")"}


@dataclass
class PluginInfo:
    """What the source itself declares."""
    name: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    resource_id: Optional[str] = None
    source: str = "none"


@dataclass
class PluginMetadata:
    """Resolved metadata with fallbacks applied."""
    name: str
    author: str
    version: Optional[str] = None
    description: Optional[str] = None
    resource_id: Optional[str] = None
    source: str = "filename"


def clean_value(value: Optional[str]) -> Optional[str]:
    """Trim a captured value and discard placeholders."""
    if value is None:
        return None
    cleaned = value.strip()
    if cleaned in _JUNK_VALUES or cleaned.lower() in _JUNK_VALUES:
        return None
    return cleaned


def _first(*groups: Optional[str]) -> Optional[str]:
    for group in groups:
        if group:
            return group
    return None


def _named_param(block: str, names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        match = re.search(rf"\b{name}\s*[:=]\s*{_VALUE}", block, re.IGNORECASE)
        if match:
            return _first(*match.groups())
    return None


def decode_source(content: bytes | str) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return content


def is_oxide_plugin(content: bytes | str) -> bool:
    """True when the source declares the Oxide.Plugins namespace."""
    return NAMESPACE_RE.search(decode_source(content)) is not None


def parse_plugin_info(content: bytes | str) -> Optional[PluginInfo]:
    """
    Parse the declared plugin name/author.

    Returns None when neither an info attribute, a comment header nor a
    plugin class declaration is found.
    """
    text = decode_source(content)
    info = PluginInfo()

    block = INFO_BLOCK_RE.search(text)
    if block:
        snippet = block.group(0)
        info.name = clean_value(_named_param(snippet, ("Title", "Name")))
        info.author = clean_value(_named_param(snippet, ("Author",)))
        info.version = clean_value(_named_param(snippet, ("Version",)))
        info.resource_id = clean_value(_named_param(snippet, ("ResourceId", "Resource")))
        if info.name:
            info.source = "info-named"

    if not info.name:
        positional = POSITIONAL_INFO_RE.search(text)
        if positional:
            g = positional.groups()
            info.name = clean_value(_first(*g[0:3]))
            info.author = clean_value(_first(*g[3:6])) or info.author
            info.version = clean_value(_first(*g[6:9])) or info.version
            info.resource_id = clean_value(_first(*g[9:12])) or info.resource_id
            if info.name:
                info.source = "info-positional"

    comment = COMMENT_INFO_RE.search(text)
    if comment:
        if not info.name:
            info.name = clean_value(comment.group(1))
            if info.name:
                info.source = "comment"
        info.author = info.author or clean_value(comment.group(2))
        info.version = info.version or clean_value(comment.group(3))
        info.resource_id = info.resource_id or clean_value(comment.group(4))

    if not info.name:
        plugin_class = PLUGIN_CLASS_RE.search(text)
        if plugin_class:
            info.name = plugin_class.group(1)
            info.author = None  # filled with the repository owner
            info.source = "class"

    if not info.name:
        return None
    return info


def parse_description(content: bytes | str) -> Optional[str]:
    match = DESCRIPTION_RE.search(decode_source(content))
    if not match:
        return None
    return clean_value(_first(*match.groups()))


def extract_plugin_metadata(
    content: bytes | str | None,
    file_path: str,
    owner_login: str,
) -> PluginMetadata:
    """
    Resolve plugin metadata for a file, falling back to the file name and
    the repository owner.

    Args:
        content: Raw file bytes or decoded text; None when the fetch failed.
        file_path: Path of the file within the repository.
        owner_login: Repository owner, used when no author is declared.
    """
    fallback_name = PurePosixPath(file_path.replace("\\", "/")).stem

    if content is None:
        return PluginMetadata(name=fallback_name, author=owner_login)

    info = parse_plugin_info(content)
    description = parse_description(content)

    if info is None:
        return PluginMetadata(name=fallback_name, author=owner_login, description=description)

    return PluginMetadata(
        name=info.name or fallback_name,
        author=info.author or owner_login,
        version=info.version,
        description=description,
        resource_id=info.resource_id,
        source=info.source,
    )
