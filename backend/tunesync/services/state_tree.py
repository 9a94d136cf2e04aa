"""
Path-addressed helpers for the room state tree.

Room documents are plain JSON trees. Writes address nodes with slash
separated paths ("playbackState/isPlaying"); writing ``None`` removes the
node. ``SERVER_TIMESTAMP`` placeholders are resolved to store time when a
write is committed.
"""
import copy
import secrets
import threading
from typing import Any, Dict, List, Optional

SERVER_TIMESTAMP: Dict[str, str] = {".sv": "timestamp"}

_push_lock = threading.Lock()
_last_push_ms = 0
_push_seq = 0


def split_path(path: str) -> List[str]:
    return [part for part in path.strip("/").split("/") if part]


def is_server_timestamp(value: Any) -> bool:
    return isinstance(value, dict) and value == SERVER_TIMESTAMP


def get_in(doc: Any, path: str) -> Any:
    node = doc
    for part in split_path(path):
        if isinstance(node, dict):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
        if node is None:
            return None
    return node


def set_in(doc: Optional[Dict[str, Any]], path: str, value: Any) -> Dict[str, Any]:
    """Return a copy of ``doc`` with ``value`` stored at ``path``."""
    root = copy.deepcopy(doc) if doc is not None else {}
    parts = split_path(path)
    if not parts:
        raise ValueError("Cannot set the document root through a path")

    node: Any = root
    for part in parts[:-1]:
        if isinstance(node, list) and part.isdigit() and int(part) < len(node):
            child = node[int(part)]
            if not isinstance(child, (dict, list)):
                child = {}
                node[int(part)] = child
            node = child
            continue
        if isinstance(node, list):
            raise ValueError(f"Path segment {part!r} does not index a list")
        child = node.get(part)
        if not isinstance(child, (dict, list)):
            if value is None:
                return root
            child = {}
            node[part] = child
        node = child

    leaf = parts[-1]
    if isinstance(node, list):
        if not leaf.isdigit():
            raise ValueError(f"Path segment {leaf!r} does not index a list")
        index = int(leaf)
        if value is None:
            if index < len(node):
                del node[index]
        elif index < len(node):
            node[index] = value
        elif index == len(node):
            node.append(value)
        else:
            raise ValueError(f"List index {index} out of range")
    elif value is None:
        node.pop(leaf, None)
    else:
        node[leaf] = value
    return root


def resolve_server_values(value: Any, previous: Any, now_ms: int) -> Any:
    """Replace timestamp placeholders; never move a timestamp backwards."""
    if is_server_timestamp(value):
        if isinstance(previous, (int, float)) and not isinstance(previous, bool):
            return max(now_ms, int(previous))
        return now_ms
    if isinstance(value, dict):
        prev = previous if isinstance(previous, dict) else {}
        return {k: resolve_server_values(v, prev.get(k), now_ms) for k, v in value.items()}
    if isinstance(value, list):
        prev = previous if isinstance(previous, list) else []
        return [
            resolve_server_values(v, prev[i] if i < len(prev) else None, now_ms)
            for i, v in enumerate(value)
        ]
    return value


def new_push_key(now_ms: int) -> str:
    """Unique key that sorts in creation order."""
    global _last_push_ms, _push_seq
    with _push_lock:
        if now_ms <= _last_push_ms:
            now_ms = _last_push_ms
            _push_seq += 1
        else:
            _last_push_ms = now_ms
            _push_seq = 0
        seq = _push_seq
    return f"-{now_ms:013d}{seq:04d}{secrets.token_hex(3)}"
