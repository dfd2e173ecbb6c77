from __future__ import annotations

"""
Streaming reader for CARv1 containers.

Layout
- varint(header_len) || DAG-CBOR header {version: 1, roots: [CID, ...]}
- repeated sections: varint(section_len) || CID bytes || block payload
  (section_len covers CID + payload)

Lengths are checked against the bytes actually available; a short read is a
MalformedContainer rather than an EOFError.
"""

import io
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional

from multiformats import CID, varint

from .codec import decode_object
from .constants import CAR_VERSION, CIDV0_LEN, CIDV0_PREFIX, MAX_VARINT_LEN, READ_CHUNK
from .errors import CorruptObject, MalformedContainer


@dataclass
class CarHeader:
    version: int
    roots: List[CID]


@dataclass
class Block:
    cid: CID
    data: bytes
    offset: int


def _cid_length(section: bytes, offset: int) -> int:
    if section[:2] == CIDV0_PREFIX:
        return CIDV0_LEN
    view = memoryview(section)
    pos = 0
    try:
        # version, codec, multihash code, then digest length
        for _ in range(3):
            _val, n, _rest = varint.decode_raw(view[pos:])
            pos += n
        digest_len, n, _rest = varint.decode_raw(view[pos:])
    except (ValueError, IndexError) as exc:
        raise MalformedContainer(f"unreadable CID prefix: {exc}", offset=offset) from exc
    return pos + n + digest_len


class CarReader:
    def __init__(self, f: BinaryIO):
        self.f = f
        self.pos = 0
        self.header = self._read_header()

    @classmethod
    def from_bytes(cls, data: bytes) -> "CarReader":
        return cls(io.BytesIO(data))

    @property
    def roots(self) -> List[CID]:
        return self.header.roots

    def _read_exact(self, n: int, what: str) -> bytes:
        # n comes from the input; read it in bounded pieces
        start = self.pos
        parts = []
        got = 0
        while got < n:
            b = self.f.read(min(n - got, READ_CHUNK))
            if not b:
                break
            parts.append(b)
            got += len(b)
        self.pos += got
        if got != n:
            raise MalformedContainer(
                f"{what} declares {n} byte(s) but only {got} remain", offset=start
            )
        return b"".join(parts)

    def _read_varint(self, *, allow_eof: bool = False) -> Optional[int]:
        start = self.pos
        buf = bytearray()
        while True:
            b = self.f.read(1)
            if not b:
                if allow_eof and not buf:
                    return None
                raise MalformedContainer("truncated varint", offset=start)
            self.pos += 1
            buf += b
            if not b[0] & 0x80:
                break
            if len(buf) >= MAX_VARINT_LEN:
                raise MalformedContainer("varint too long", offset=start)
        try:
            return varint.decode(bytes(buf))
        except ValueError as exc:
            raise MalformedContainer(f"invalid varint: {exc}", offset=start) from exc

    def _read_header(self) -> CarHeader:
        start = self.pos
        length = self._read_varint(allow_eof=True)
        if length is None:
            raise MalformedContainer("empty container", offset=start)
        if length == 0:
            raise MalformedContainer("zero-length header", offset=start)
        raw = self._read_exact(length, "header")
        try:
            obj = decode_object(raw)
        except CorruptObject as exc:
            raise MalformedContainer(f"header is not valid DAG-CBOR: {exc}", offset=start) from exc
        if not isinstance(obj, dict):
            raise MalformedContainer("header must be a map", offset=start)
        version = obj.get("version")
        if type(version) is not int:
            raise MalformedContainer("header version missing or not an integer", offset=start)
        if version != CAR_VERSION:
            raise MalformedContainer(f"unsupported CAR version {version}", offset=start)
        roots = obj.get("roots")
        if not isinstance(roots, list) or not all(isinstance(r, CID) for r in roots):
            raise MalformedContainer("header roots must be a list of CIDs", offset=start)
        return CarHeader(version=version, roots=list(roots))

    def read_block(self) -> Optional[Block]:
        """Read the next section; None at a clean end of input."""
        offset = self.pos
        length = self._read_varint(allow_eof=True)
        if length is None:
            return None
        if length == 0:
            raise MalformedContainer("zero-length section", offset=offset)
        section = self._read_exact(length, "section")
        cid_len = _cid_length(section, offset)
        if cid_len > len(section):
            raise MalformedContainer("CID overruns its section", offset=offset)
        try:
            cid = CID.decode(section[:cid_len])
        except (ValueError, KeyError) as exc:
            raise MalformedContainer(f"invalid section CID: {exc}", offset=offset) from exc
        return Block(cid=cid, data=section[cid_len:], offset=offset)

    def blocks(self) -> Iterator[Block]:
        while True:
            blk = self.read_block()
            if blk is None:
                return
            yield blk
