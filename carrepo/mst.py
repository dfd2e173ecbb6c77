from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from multiformats import CID

from .blockstore import BlockStore, load_object
from .errors import CorruptObject


@dataclass
class TreeEntry:
    prefix_len: int
    key_suffix: bytes
    value: CID
    right: Optional[CID]


@dataclass
class MstNode:
    left: Optional[CID]
    entries: List[TreeEntry]


def _optional_link(obj: dict, field: str, cid: CID) -> Optional[CID]:
    link = obj.get(field)
    if link is not None and not isinstance(link, CID):
        raise CorruptObject(f"MST field '{field}' must be a CID or null", cid=cid)
    return link


def parse_node(obj: Any, cid: CID) -> MstNode:
    """Cast a decoded object to an MstNode, raising CorruptObject on shape mismatch."""
    if not isinstance(obj, dict):
        raise CorruptObject("MST node must be a map", cid=cid)
    raw_entries = obj.get("e")
    if not isinstance(raw_entries, list):
        raise CorruptObject("MST node entries 'e' must be a list", cid=cid)
    entries: List[TreeEntry] = []
    for i, ent in enumerate(raw_entries):
        if not isinstance(ent, dict):
            raise CorruptObject(f"MST entry {i} must be a map", cid=cid)
        p = ent.get("p")
        k = ent.get("k")
        v = ent.get("v")
        if type(p) is not int or p < 0:
            raise CorruptObject(f"MST entry {i}: 'p' must be a non-negative integer", cid=cid)
        if not isinstance(k, bytes):
            raise CorruptObject(f"MST entry {i}: 'k' must be a byte string", cid=cid)
        if not isinstance(v, CID):
            raise CorruptObject(f"MST entry {i}: 'v' must be a CID", cid=cid)
        entries.append(TreeEntry(prefix_len=p, key_suffix=k, value=v, right=_optional_link(ent, "t", cid)))
    return MstNode(left=_optional_link(obj, "l", cid), entries=entries)


def load_node(store: BlockStore, cid: CID) -> MstNode:
    return parse_node(load_object(store, cid), cid)


class _Frame:
    __slots__ = ("cid", "entries", "pos", "prev_key")

    def __init__(self, cid: CID, node: MstNode):
        self.cid = cid
        self.entries = node.entries
        self.pos = 0
        self.prev_key = b""


class MstWalker:
    """Single-pass, ascending-order iterator over ``(key, value_cid)`` pairs.

    Subtrees are expanded through an explicit frame stack. Each frame holds a
    node's entry list, the next entry position and the last key rebuilt in
    that node. A node is fetched from the store only when the walk needs its
    first entry, so a missing block surfaces on the pull that reaches it.
    """

    def __init__(self, store: BlockStore, root: CID):
        self.store = store
        self._stack: List[_Frame] = []
        self._pending: Optional[CID] = root
        self._last_key: Optional[bytes] = None

    def _descend(self, cid: Optional[CID]) -> None:
        # Push the node and then its chain of left subtrees; the deepest
        # left-most node ends up on top.
        while cid is not None:
            node = load_node(self.store, cid)
            self._stack.append(_Frame(cid, node))
            cid = node.left

    def __iter__(self) -> "MstWalker":
        return self

    def __next__(self) -> Tuple[bytes, CID]:
        if self._pending is not None:
            cid, self._pending = self._pending, None
            self._descend(cid)
        while self._stack:
            frame = self._stack[-1]
            if frame.pos >= len(frame.entries):
                self._stack.pop()
                continue
            entry = frame.entries[frame.pos]
            frame.pos += 1
            if entry.prefix_len > len(frame.prev_key):
                raise CorruptObject(
                    f"prefix length {entry.prefix_len} exceeds previous key length {len(frame.prev_key)}",
                    cid=frame.cid,
                )
            key = frame.prev_key[: entry.prefix_len] + entry.key_suffix
            frame.prev_key = key
            if self._last_key is not None and key <= self._last_key:
                raise CorruptObject(f"MST keys out of order at {key!r}", cid=frame.cid)
            self._last_key = key
            # entries between this key and the next one are walked on the following pull
            self._pending = entry.right
            return key, entry.value
        raise StopIteration
