"""
Queue algorithms over the normalized ordered sequence.

The store may hold a queue either as an array or as a keyed map (what
push-appends produce). ``QueueSnapshot`` is the only place that knows about
the two encodings: it decodes either one into an ordered list and encodes
back into the encoding it came from. Whole-queue rewrites (reorder,
shuffle) always produce an array.
"""
import random
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tunesync.models.song import Song

SongDoc = Dict[str, Any]


class QueueSnapshot:
    def __init__(self, items: List[SongDoc], keys: Optional[List[str]] = None):
        self.items = items
        self.keys = keys

    @classmethod
    def decode(cls, raw: Any) -> "QueueSnapshot":
        if isinstance(raw, dict):
            keys = [k for k, v in raw.items() if v is not None]
            return cls([raw[k] for k in keys], keys)
        if isinstance(raw, list):
            return cls([item for item in raw if item is not None])
        return cls([])

    @property
    def is_keyed(self) -> bool:
        return self.keys is not None

    def __len__(self) -> int:
        return len(self.items)

    def songs(self) -> List[Song]:
        return [Song.model_validate(item) for item in self.items]

    def encode(self) -> Any:
        if self.keys is not None:
            return dict(zip(self.keys, self.items))
        return list(self.items)

    def pop_head(self) -> Tuple[Optional[SongDoc], "QueueSnapshot"]:
        if not self.items:
            return None, self
        rest_keys = self.keys[1:] if self.keys is not None else None
        return self.items[0], QueueSnapshot(self.items[1:], rest_keys)

    def remove(self, song_id: str) -> Tuple[Optional[SongDoc], "QueueSnapshot"]:
        """Drop the first entry whose ``id`` matches; no-op when absent."""
        for index, item in enumerate(self.items):
            if item.get("id") == song_id:
                items = self.items[:index] + self.items[index + 1:]
                keys = None
                if self.keys is not None:
                    keys = self.keys[:index] + self.keys[index + 1:]
                return item, QueueSnapshot(items, keys)
        return None, self

    def find(self, song_id: str) -> Optional[SongDoc]:
        return next((item for item in self.items if item.get("id") == song_id), None)

    def appended(self, song: SongDoc, key: str) -> "QueueSnapshot":
        if self.keys is not None:
            return QueueSnapshot(self.items + [song], self.keys + [key])
        return QueueSnapshot(self.items + [song])


def append_raw(raw: Any, song: SongDoc, key: str) -> Any:
    """Tail-append keeping the stored encoding; a missing or empty queue becomes ``[song]``."""
    if not raw:
        return [song]
    return QueueSnapshot.decode(raw).appended(song, key).encode()


def shuffle_items(items: Sequence[Any], rng: random.Random | None = None) -> List[Any]:
    """Uniformly random permutation (Fisher-Yates via ``Random.shuffle``)."""
    shuffled = list(items)
    (rng or random).shuffle(shuffled)
    return shuffled


def permutation_by_ids(items: Sequence[SongDoc], song_ids: Sequence[str]) -> List[SongDoc]:
    """Reorder ``items`` to follow ``song_ids``.

    Raises ValueError unless ``song_ids`` names exactly the queued ids.
    """
    if Counter(item.get("id") for item in items) != Counter(song_ids):
        raise ValueError("Song ids are not a permutation of the queue")
    pools: Dict[str, List[SongDoc]] = {}
    for item in items:
        pools.setdefault(item.get("id"), []).append(item)
    return [pools[song_id].pop(0) for song_id in song_ids]
