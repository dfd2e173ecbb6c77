from __future__ import annotations

"""
Repository export: one CARv1 container holding a signed commit whose ``data``
field points at the root of a Merkle Search Tree of records.

Opening a repository reads the whole container, verifies every block against
its CID and seals the resulting block store. Records are then produced one at
a time, in ascending key order, only as the caller pulls them.
"""

import io
import os
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, List, Optional, Tuple, Union

from multiformats import CID

from .blockstore import BlockStore, load_object
from .car import CarReader
from .codec import decode_object
from .constants import COMMIT_VERSION, KEY_SEPARATOR
from .errors import (
    CorruptObject,
    MalformedKey,
    UnexpectedRootCount,
    UnsupportedVersion,
)
from .mst import MstWalker


Source = Union[str, "os.PathLike[str]", bytes, bytearray, memoryview, BinaryIO]


@dataclass
class Commit:
    did: str
    version: int
    data: CID
    rev: str
    prev: Optional[CID]
    sig: bytes


@dataclass
class RepoRecord:
    collection: str
    rkey: str
    value: Any


def parse_commit(obj: Any, cid: CID) -> Commit:
    """Cast a decoded object to a Commit.

    The version is checked first so a well-formed commit of another version
    reports UnsupportedVersion rather than a shape error. Unknown fields are
    ignored.
    """
    if not isinstance(obj, dict):
        raise CorruptObject("commit must be a map", cid=cid)
    version = obj.get("version")
    if type(version) is not int:
        raise CorruptObject("commit version missing or not an integer", cid=cid)
    if version != COMMIT_VERSION:
        raise UnsupportedVersion(f"commit version {version} (expected {COMMIT_VERSION})", cid=cid)
    did, data, rev, prev, sig = (obj.get(k) for k in ("did", "data", "rev", "prev", "sig"))
    if not isinstance(did, str):
        raise CorruptObject("commit 'did' must be a string", cid=cid)
    if not isinstance(data, CID):
        raise CorruptObject("commit 'data' must be a CID", cid=cid)
    if not isinstance(rev, str):
        raise CorruptObject("commit 'rev' must be a string", cid=cid)
    if prev is not None and not isinstance(prev, CID):
        raise CorruptObject("commit 'prev' must be a CID or null", cid=cid)
    if not isinstance(sig, bytes):
        raise CorruptObject("commit 'sig' must be a byte string", cid=cid)
    return Commit(did=did, version=version, data=data, rev=rev, prev=prev, sig=sig)


def load_commit(store: BlockStore, cid: CID) -> Commit:
    return parse_commit(load_object(store, cid), cid)


def split_key(key: Union[bytes, str]) -> Tuple[str, str]:
    """Split ``collection/rkey`` on the first separator."""
    if isinstance(key, bytes):
        try:
            key = key.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedKey(f"key is not valid UTF-8: {key!r}") from exc
    collection, sep, rkey = key.partition(KEY_SEPARATOR)
    if not sep:
        raise MalformedKey(f"key {key!r} has no '{KEY_SEPARATOR}' separator")
    return collection, rkey


class RecordStream:
    """Iterator turning MST leaves into RepoRecords, decoding each value on demand."""

    def __init__(self, store: BlockStore, walker: MstWalker, decoder: Callable[[bytes], Any]):
        self.store = store
        self.walker = walker
        self.decoder = decoder

    def __iter__(self) -> "RecordStream":
        return self

    def __next__(self) -> RepoRecord:
        key, cid = next(self.walker)
        collection, rkey = split_key(key)
        value = load_object(self.store, cid, self.decoder)
        return RepoRecord(collection=collection, rkey=rkey, value=value)


class RepoReader:
    def __init__(self, source: Source, *, record_decoder: Callable[[bytes], Any] = decode_object):
        self.source = source
        self.record_decoder = record_decoder
        self.roots: List[CID] = []
        self.root: Optional[CID] = None
        self.commit: Optional[Commit] = None
        self.store: Optional[BlockStore] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _open_source(self) -> Tuple[BinaryIO, bool]:
        src = self.source
        if isinstance(src, (bytes, bytearray, memoryview)):
            return io.BytesIO(bytes(src)), True
        if isinstance(src, (str, os.PathLike)):
            return open(src, "rb"), True
        return src, False

    def open(self):
        """Read the container, verify and store every block, and decode the commit."""
        if self.store is not None:
            return
        f, owned = self._open_source()
        try:
            car = CarReader(f)
            self.roots = car.roots
            if len(car.roots) != 1:
                raise UnexpectedRootCount(f"expected exactly 1 root, found {len(car.roots)}")
            self.root = car.roots[0]
            store = BlockStore.from_blocks(car.blocks())
            self.commit = load_commit(store, self.root)
            self.store = store
        finally:
            if owned:
                f.close()

    def close(self):
        if self.store is not None:
            self.store.clear()
        self.store = None

    def _require_open(self) -> BlockStore:
        if self.store is None or self.commit is None:
            raise RuntimeError("Repository not open")
        return self.store

    @property
    def block_count(self) -> int:
        return len(self._require_open())

    def walk(self) -> MstWalker:
        store = self._require_open()
        return MstWalker(store, self.commit.data)

    def records(self) -> RecordStream:
        store = self._require_open()
        return RecordStream(store, self.walk(), self.record_decoder)

    def verify(self) -> int:
        """Walk the whole tree and decode every record; returns the record count."""
        count = 0
        for _rec in self.records():
            count += 1
        return count


class RepoExport:
    """Lazy export of ``RepoRecord``s from one container.

    Nothing is read until the first ``next()``. The block store is released
    when the records run out, when an error aborts the export, or on
    ``close()``.
    """

    def __init__(self, source: Source, *, record_decoder: Callable[[bytes], Any] = decode_object):
        self.reader = RepoReader(source, record_decoder=record_decoder)
        self._records: Optional[RecordStream] = None
        self._closed = False

    def __iter__(self) -> "RepoExport":
        return self

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def commit(self) -> Optional[Commit]:
        return self.reader.commit

    def __next__(self) -> RepoRecord:
        if self._closed:
            raise StopIteration
        try:
            if self._records is None:
                self.reader.open()
                self._records = self.reader.records()
            return next(self._records)
        except StopIteration:
            self.close()
            raise
        except Exception:
            self.close()
            raise

    def close(self):
        self._closed = True
        self._records = None
        self.reader.close()


def export_records(source: Source, *, record_decoder: Callable[[bytes], Any] = decode_object) -> RepoExport:
    return RepoExport(source, record_decoder=record_decoder)
