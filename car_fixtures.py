from __future__ import annotations

"""Builders for synthetic repository CAR files used by the tests."""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from Cryptodome.Hash import SHA256
from multiformats import CID, varint

from carrepo.codec import encode_object


def make_cid(data: bytes, codec: str = "dag-cbor") -> CID:
    return CID("base32", 1, codec, ("sha2-256", SHA256.new(data).digest()))


def car_bytes(roots: Sequence[CID], blocks: Iterable[Tuple[CID, bytes]], *, header: Optional[bytes] = None) -> bytes:
    hdr = encode_object({"version": 1, "roots": list(roots)}) if header is None else header
    out = bytearray(varint.encode(len(hdr)) + hdr)
    for cid, data in blocks:
        section = bytes(cid) + data
        out += varint.encode(len(section)) + section
    return bytes(out)


def _common_prefix_len(a: bytes, b: bytes) -> int:
    n = 0
    for x, y in zip(a, b):
        if x != y:
            break
        n += 1
    return n


def node_object(left: Optional[CID], entries: Sequence[Tuple[bytes, CID, Optional[CID]]]) -> dict:
    """MST node map with prefix-compressed keys; entries are (key, value, right)."""
    e = []
    prev = b""
    for key, value, right in entries:
        p = _common_prefix_len(prev, key)
        e.append({"p": p, "k": key[p:], "v": value, "t": right})
        prev = key
    return {"l": left, "e": e}


class BlockSet:
    def __init__(self):
        self.blocks: Dict[bytes, Tuple[CID, bytes]] = {}

    def add_raw(self, data: bytes, codec: str = "dag-cbor") -> CID:
        cid = make_cid(data, codec)
        self.blocks[bytes(cid)] = (cid, data)
        return cid

    def add(self, obj) -> CID:
        return self.add_raw(encode_object(obj))

    def add_node(self, left: Optional[CID], entries: Sequence[Tuple[bytes, CID, Optional[CID]]]) -> CID:
        return self.add(node_object(left, entries))


def build_tree(bs: BlockSet, items: List[Tuple[bytes, CID]], fanout: int = 3) -> Optional[CID]:
    """Build a multi-level tree over sorted ``items``; returns the root node CID."""
    if not items:
        return None
    if len(items) <= fanout:
        return bs.add_node(None, [(k, v, None) for k, v in items])
    step = -(-len(items) // (fanout + 1))
    seps = list(range(step, len(items), step + 1))[:fanout]
    left = build_tree(bs, items[: seps[0]], fanout)
    entries = []
    for j, s in enumerate(seps):
        end = seps[j + 1] if j + 1 < len(seps) else len(items)
        right = build_tree(bs, items[s + 1 : end], fanout)
        entries.append((items[s][0], items[s][1], right))
    return bs.add_node(left, entries)


def commit_object(data: CID, *, version: int = 3, prev: Optional[CID] = None) -> dict:
    return {
        "did": "did:plc:testrepo",
        "version": version,
        "data": data,
        "rev": "3kabcdefghij2",
        "prev": prev,
        "sig": b"\x01" * 64,
    }


class RepoFixture:
    """A repository of ``records`` (key -> value) packed into a tree and a commit."""

    def __init__(self, records: Dict[str, object], *, fanout: int = 3, version: int = 3):
        self.records = records
        self.bs = BlockSet()
        self.record_cids: Dict[str, CID] = {}
        items = []
        for key in sorted(records, key=lambda k: k.encode("utf-8")):
            cid = self.bs.add(records[key])
            self.record_cids[key] = cid
            items.append((key.encode("utf-8"), cid))
        data = build_tree(self.bs, items, fanout)
        if data is None:
            data = self.bs.add_node(None, [])
        self.data_cid = data
        self.commit_cid = self.bs.add(commit_object(data, version=version))

    def sorted_keys(self) -> List[str]:
        return sorted(self.records, key=lambda k: k.encode("utf-8"))

    def car(self, *, roots: Optional[Sequence[CID]] = None, drop: Iterable[CID] = ()) -> bytes:
        dropped = {bytes(c) for c in drop}
        blocks = [self.bs.blocks[bytes(self.commit_cid)]]
        blocks += [b for raw, b in self.bs.blocks.items() if raw != bytes(self.commit_cid)]
        blocks = [b for b in blocks if bytes(b[0]) not in dropped]
        return car_bytes([self.commit_cid] if roots is None else roots, blocks)


def sample_records(n: int) -> Dict[str, object]:
    out: Dict[str, object] = {}
    collections = ["app.bsky.actor.profile", "app.bsky.feed.like", "app.bsky.feed.post", "app.bsky.graph.follow"]
    for i in range(n):
        coll = collections[i % len(collections)]
        out[f"{coll}/3k{i:05d}"] = {
            "$type": coll,
            "text": f"record {i}",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "n": i,
            "tags": ["a", "b"],
        }
    return out
