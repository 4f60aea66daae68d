"""
Record tree helpers.

Record trees are plain JSON-shaped values (dicts, lists, scalars) addressed
by '/'-separated paths such as ``projects/p1/sections/0``.
"""

import copy
from typing import Any, List, Optional


def split_path(path: str) -> List[str]:
    """Split a record path into segments. '' and '/' address the root."""
    if path is None:
        raise ValueError("path must not be None")
    stripped = path.strip("/")
    if not stripped:
        return []
    segments = stripped.split("/")
    if any(not s for s in segments):
        raise ValueError(f"Invalid record path: {path!r}")
    return segments


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def get_in(tree: Any, segments: List[str]) -> Optional[Any]:
    """Return the value at segments, or None when any step is missing."""
    current = tree
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit() or int(segment) >= len(current):
                return None
            current = current[int(segment)]
        else:
            return None
    return current


def set_in(tree: Any, segments: List[str], value: Any) -> Any:
    """
    Return a copy of tree with value stored at segments.

    Missing intermediate levels are created as dicts. A value of None
    deletes the entry, which is how the record store removes data.
    """
    if not segments:
        return copy.deepcopy(value)

    root = copy.deepcopy(tree) if isinstance(tree, (dict, list)) else {}
    current = root
    for segment in segments[:-1]:
        if isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            nxt = current[int(segment)]
            if not isinstance(nxt, (dict, list)):
                nxt = {}
                current[int(segment)] = nxt
        elif isinstance(current, dict):
            nxt = current.get(segment)
            if not isinstance(nxt, (dict, list)):
                nxt = {}
                current[segment] = nxt
        else:
            raise ValueError(f"Cannot descend into list with segment {segment!r}")
        current = nxt

    last = segments[-1]
    if isinstance(current, list):
        if not last.isdigit():
            raise ValueError(f"Cannot index list with segment {last!r}")
        index = int(last)
        if value is None:
            if index < len(current):
                current.pop(index)
        elif index < len(current):
            current[index] = copy.deepcopy(value)
        elif index == len(current):
            current.append(copy.deepcopy(value))
        else:
            raise ValueError(f"List index {index} out of range")
    elif value is None:
        current.pop(last, None)
    else:
        current[last] = copy.deepcopy(value)
    return root


def _is_array_like(value: dict) -> bool:
    keys = list(value.keys())
    return bool(keys) and all(isinstance(k, str) and k.isdigit() for k in keys) \
        and sorted(int(k) for k in keys) == list(range(len(keys)))


def normalize_tree(value: Any) -> Any:
    """
    Canonical form used for structural comparison.

    Drops None values and empty containers nested in mappings (the record
    store does not persist them) and turns dicts keyed "0".."n-1" into lists,
    the way arrays come back from the store.
    """
    if isinstance(value, dict):
        if _is_array_like(value):
            return [normalize_tree(value[str(i)]) for i in range(len(value))]
        result = {}
        for key, item in value.items():
            normalized = normalize_tree(item)
            if normalized is None or normalized == {} or normalized == []:
                continue
            result[key] = normalized
        return result
    if isinstance(value, (list, tuple)):
        return [normalize_tree(item) for item in value]
    return value


def trees_equal(left: Any, right: Any) -> bool:
    """Deep structural equality, insensitive to field order and encoding."""
    return normalize_tree(left) == normalize_tree(right)


def diff_paths(left: Any, right: Any, prefix: str = "", limit: int = 20) -> List[str]:
    """List up to `limit` paths where two normalized trees differ."""
    found: List[str] = []

    def walk(a: Any, b: Any, path: str) -> None:
        if len(found) >= limit:
            return
        if isinstance(a, dict) and isinstance(b, dict):
            for key in sorted(set(a) | set(b), key=str):
                walk(a.get(key), b.get(key), join_path(path, str(key)))
        elif isinstance(a, list) and isinstance(b, list) and len(a) == len(b):
            for index, (x, y) in enumerate(zip(a, b)):
                walk(x, y, join_path(path, str(index)))
        elif a != b:
            found.append(path or "/")

    walk(normalize_tree(left), normalize_tree(right), prefix)
    return found
