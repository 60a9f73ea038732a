"""Small string, path and JSON helpers."""

from __future__ import annotations

import json
import os
import re
import sys
from typing import Any, Mapping, TypeVar

K = TypeVar("K")
V = TypeVar("V")

UNKNOWN_VERSION = "версия не определена"

_VERSION_PATTERN = re.compile(r"v(\d)+\.(\d)+.(\d)+")
_HEX_PATTERN = re.compile(r"[a-fA-F0-9]+")
_HASH_TYPES = {32: "md5", 40: "sha1", 64: "sha256", 128: "sha512"}
_EMPTY_JSON_ERROR = "error decoding the json file, it may be empty"


def copy_map(mapping: Mapping[K, V]) -> dict[K, V]:
    """Return a shallow copy of ``mapping`` as a new dict."""
    return dict(mapping)


def get_whitespace(num: int) -> str:
    """Return an indent of two spaces per level."""
    return "  " * max(num, 0)


def get_app_name(path: str | os.PathLike[str], line_number: int) -> str:
    """Return line ``line_number`` (counted from 1) of a file, or ``""``."""
    with open(path, "rb") as handle:
        for number, raw in enumerate(handle, start=1):
            if number == line_number:
                line = raw.rstrip(b"\n")
                if line.endswith(b"\r"):
                    line = line[:-1]
                return line.decode("utf-8", errors="replace")
    return ""


def get_app_version(text: str) -> str:
    """Extract a ``vX.Y.Z`` version from ``text``."""
    match = _VERSION_PATTERN.search(text)
    return match.group(0) if match else UNKNOWN_VERSION


def check_string_hash(value: str) -> tuple[str, int]:
    """Guess the hash algorithm of a hex string from its length.

    Returns the algorithm name and the length; raises ``ValueError``
    when the value is not hexadecimal.
    """
    if not _HEX_PATTERN.fullmatch(value):
        raise ValueError("the value must consist of hexadecimal characters only")
    size = len(value)
    return _HASH_TYPES.get(size, "other"), size


def get_root_path(root_dir: str) -> str:
    """Return the path of the running program up to the directory ``root_dir``."""
    current_dir = os.path.abspath(os.path.dirname(sys.argv[0] if sys.argv else ""))
    parts = current_dir.split("/")

    if parts[-1] == root_dir:
        return current_dir

    path = ""
    for part in parts:
        path += part + "/"
        if part == root_dir:
            return path
    return path


def read_reflect_json_sprint(data: bytes | str) -> str:
    """Render a JSON object or array as indented text.

    Raises ``ValueError`` when the document is empty or is neither an
    object nor an array.
    """
    try:
        document = json.loads(data)
    except (ValueError, TypeError):
        raise ValueError("the contents of the file are not Map or Slice") from None

    if document is None:
        raise ValueError(_EMPTY_JSON_ERROR)
    if isinstance(document, dict):
        if not document:
            raise ValueError(_EMPTY_JSON_ERROR)
        return _render_map(document, 0)
    if isinstance(document, list):
        if not document:
            raise ValueError(_EMPTY_JSON_ERROR)
        return _render_list(document, 0)
    raise ValueError("the contents of the file are not Map or Slice")


def _render_scalar(name: str | int, value: Any, level: int) -> str:
    indent = get_whitespace(level)
    clean_line = False
    if isinstance(name, int):
        label = f"{indent}{name + 1}."
    else:
        label = f'{indent}"{name}":'
        clean_line = name == "description"

    if isinstance(value, str):
        if clean_line:
            value = value.replace("\t", "").replace("\n", "")
        return f'{label} "{value}"\n'
    if isinstance(value, bool):
        return f"{label} {'true' if value else 'false'}\n"
    if isinstance(value, (int, float)):
        return f"{label} {int(value)}\n"
    return ""


def _render_map(mapping: dict[str, Any], level: int) -> str:
    indent = get_whitespace(level)
    out = []
    for key, value in mapping.items():
        if value is None:
            break
        if isinstance(value, dict):
            out.append(f"{indent}{key}:\n")
            out.append(_render_map(value, level + 1))
        elif isinstance(value, list):
            out.append(f"{indent}{key}:\n")
            out.append(_render_list(value, level + 1))
        else:
            out.append(_render_scalar(key, value, level))
    return "".join(out)


def _render_list(items: list[Any], level: int) -> str:
    indent = get_whitespace(level)
    out = []
    for index, value in enumerate(items):
        if value is None:
            break
        if isinstance(value, dict):
            out.append(f"{indent}{index + 1}.\n")
            out.append(_render_map(value, level + 1))
        elif isinstance(value, list):
            out.append(f"{indent}{index + 1}.\n")
            out.append(_render_list(value, level + 1))
        else:
            out.append(_render_scalar(index, value, level))
    return "".join(out)