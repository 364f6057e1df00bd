#!/usr/bin/env python3
"""Multi-level compression for persisted maps.

Levels are cumulative:
    0. none: pretty-printed JSON, no envelope transformation
    1. minify: compact separators
    2. abbreviate: well-known keys replaced with short ``~`` prefixed aliases
    3. deduplicate: repeated ``type``/``role``/``path``/``source`` values
       replaced with references into per-envelope tables, where that is shorter

Every level is lossless: ``decompress(compress(data, n)) == data``.

Example:
    >>> envelope = compress({"files": [...]}, level=3)
    >>> decompress(envelope) == {"files": [...]}
    True
"""

import json
import logging
import os
import shutil
import tempfile
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import AUTO_ABBREVIATE_THRESHOLD, AUTO_DEDUPLICATE_THRESHOLD
from .errors import InvalidFormatError, StorageError

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"

METHODS = {
    0: "none",
    1: "minification",
    2: "key-abbreviation",
    3: "value-deduplication",
}

KEY_ABBREVIATIONS = {
    "path": "~p",
    "type": "~t",
    "role": "~r",
    "size": "~s",
    "lines": "~l",
    "name": "~n",
    "extension": "~x",
    "modified": "~m",
    "git_status": "~g",
    "imports": "~i",
    "imported_by": "~ib",
    "source": "~src",
    "resolved": "~rs",
    "symbols": "~sy",
    "dependencies": "~d",
    "files": "~f",
    "stats": "~st",
}
KEY_EXPANSIONS = {abbrev: full for full, abbrev in KEY_ABBREVIATIONS.items()}

# Key -> reference table name
DEDUP_KEYS = {
    "type": "types",
    "role": "roles",
    "path": "paths",
    "source": "sources",
}
REF_PREFIX = "@@ref:"
MIN_OCCURRENCES = 3


def minify(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _walk_keys(item: Any) -> List[str]:
    keys: List[str] = []
    stack = [item]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            keys.extend(current.keys())
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)
    return keys


def _walk_strings(item: Any) -> List[str]:
    strings: List[str] = []
    stack = [item]
    while stack:
        current = stack.pop()
        if isinstance(current, str):
            strings.append(current)
        elif isinstance(current, dict):
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)
    return strings


def _rename_keys(item: Any, mapping: Dict[str, str]) -> Any:
    if isinstance(item, dict):
        return {mapping.get(k, k): _rename_keys(v, mapping) for k, v in item.items()}
    if isinstance(item, list):
        return [_rename_keys(v, mapping) for v in item]
    return item


def abbreviate_keys(data: Any) -> Any:
    return _rename_keys(data, KEY_ABBREVIATIONS)


def expand_keys(data: Any) -> Any:
    return _rename_keys(data, KEY_EXPANSIONS)


def _reference(table: str, index: int) -> str:
    return f"{REF_PREFIX}{table}:{index}"


def _saves_space(value: str, count: int, token_length: int) -> bool:
    # One quoted copy plus a comma goes into the table
    return count * (len(value) - token_length) > len(value) + 3


def deduplicate_values(data: Any) -> Tuple[Any, Dict[str, List[str]]]:
    """Replace frequent values under DEDUP_KEYS with table references.

    Only values seen at least MIN_OCCURRENCES times, and long enough that
    their references plus one table slot take less room than the copies,
    get a table slot.
    Tables are ordered by descending frequency, then value.

    Returns:
        (transformed data, reference tables)
    """
    counters: Dict[str, Counter] = {table: Counter() for table in DEDUP_KEYS.values()}

    def collect(item: Any, key: Optional[str]) -> None:
        if isinstance(item, str):
            table = DEDUP_KEYS.get(key or "")
            if table:
                counters[table][item] += 1
        elif isinstance(item, dict):
            for k, v in item.items():
                collect(v, k)
        elif isinstance(item, list):
            for v in item:
                collect(v, key)

    collect(data, None)

    references: Dict[str, List[str]] = {}
    indexes: Dict[str, Dict[str, int]] = {}
    for table, counter in counters.items():
        candidates = sorted(
            (value for value, count in counter.items() if count >= MIN_OCCURRENCES),
            key=lambda v: (-counter[v], v),
        )
        # Widest index any kept value can get
        token_length = len(_reference(table, max(len(candidates) - 1, 0)))
        frequent = [v for v in candidates if _saves_space(v, counter[v], token_length)]
        if frequent:
            references[table] = frequent
            indexes[table] = {value: i for i, value in enumerate(frequent)}

    def replace(item: Any, key: Optional[str]) -> Any:
        if isinstance(item, str):
            table = DEDUP_KEYS.get(key or "")
            if table in indexes and item in indexes[table]:
                return _reference(table, indexes[table][item])
            return item
        if isinstance(item, dict):
            return {k: replace(v, k) for k, v in item.items()}
        if isinstance(item, list):
            return [replace(v, key) for v in item]
        return item

    return replace(data, None), references


def restore_values(data: Any, references: Dict[str, List[str]]) -> Any:
    """Inverse of deduplicate_values."""
    if isinstance(data, str):
        if data.startswith(REF_PREFIX):
            table, _, index = data[len(REF_PREFIX):].rpartition(":")
            try:
                return references[table][int(index)]
            except (KeyError, IndexError, ValueError):
                return data
        return data
    if isinstance(data, dict):
        return {k: restore_values(v, references) for k, v in data.items()}
    if isinstance(data, list):
        return [restore_values(v, references) for v in data]
    return data


def auto_level(byte_size: int) -> int:
    if byte_size > AUTO_DEDUPLICATE_THRESHOLD:
        return 3
    if byte_size > AUTO_ABBREVIATE_THRESHOLD:
        return 2
    return 1


def compress(data: Any, level: Optional[int] = None) -> Dict[str, Any]:
    """Wrap ``data`` in a compression envelope.

    Abbreviation is skipped when the data already uses a ``~`` key, and
    deduplication when a string already starts with the reference prefix,
    so decompression stays exact.

    Args:
        data: JSON-serializable payload.
        level: 0-3, or None to pick from the minified size.

    Returns:
        Envelope dict ready to be serialized.
    """
    original = minify(data)
    original_size = len(original.encode("utf-8"))
    if level is None:
        level = auto_level(original_size)

    if level <= 0:
        return {"version": FORMAT_VERSION, "compressed": False, "data": data}

    payload = data
    references: Dict[str, List[str]] = {}
    applied = 1
    abbreviated = False

    if level >= 3:
        if any(s.startswith(REF_PREFIX) for s in _walk_strings(payload)):
            logger.debug("Skipping value deduplication: payload contains reference-like strings")
        else:
            payload, references = deduplicate_values(payload)
            applied = 3

    if level >= 2:
        if any(k.startswith("~") for k in _walk_keys(payload)):
            logger.debug("Skipping key abbreviation: payload already uses '~' keys")
        else:
            payload = abbreviate_keys(payload)
            abbreviated = True
            applied = max(applied, 2)

    compressed_size = len(minify(payload).encode("utf-8"))
    if references:
        compressed_size += len(minify(references).encode("utf-8"))
    ratio = (original_size - compressed_size) / original_size * 100 if original_size else 0.0

    return {
        "version": FORMAT_VERSION,
        "compressed": True,
        "level": applied,
        "abbreviated": abbreviated,
        "metadata": {
            "original_size": original_size,
            "compressed_size": compressed_size,
            "ratio": f"{ratio:.1f}%",
            "method": METHODS[applied],
        },
        "references": references,
        "data": payload,
    }


def decompress(envelope: Any) -> Any:
    """Reverse compress(). Plain (non-envelope) JSON is returned unchanged.

    Raises:
        InvalidFormatError: If a compressed envelope lacks its ``data`` field.
    """
    if not isinstance(envelope, dict) or "compressed" not in envelope:
        return envelope
    if "data" not in envelope:
        raise InvalidFormatError("envelope", "missing 'data' field")

    data = envelope["data"]
    if not envelope.get("compressed"):
        return data

    if envelope.get("abbreviated"):
        data = expand_keys(data)
    references = envelope.get("references") or {}
    if references:
        data = restore_values(data, references)
    return data


def write_json_atomic(path: Union[str, Path], text: str) -> None:
    """Write text to ``path`` via a temp file in the same directory.

    Raises:
        StorageError: If the write or the final move fails.
    """
    path = Path(path)
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}_", suffix=".json.tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        shutil.move(temp_path, path)
        temp_path = None
    except OSError as e:
        raise StorageError("write", str(path), e) from e
    finally:
        if temp_path and os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                pass


def save_map(path: Union[str, Path], data: Any, level: Optional[int] = None) -> Dict[str, Any]:
    """Compress ``data`` and write it atomically to ``path``.

    Returns:
        The envelope's compression metadata (empty for level 0).
    """
    envelope = compress(data, level)
    if envelope["compressed"]:
        text = minify(envelope)
    else:
        text = json.dumps(envelope, indent=2, ensure_ascii=False)
    write_json_atomic(path, text)
    return envelope.get("metadata", {})


def load_map(path: Union[str, Path]) -> Any:
    """Read and decompress a map written by save_map.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidFormatError: If the file is not valid JSON.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidFormatError(str(path), f"invalid JSON: {e}") from e
    try:
        return decompress(parsed)
    except InvalidFormatError as e:
        raise InvalidFormatError(str(path), e.reason) from e
