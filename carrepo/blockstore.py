from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Iterator, Optional

from multiformats import CID, varint

from .cidutil import cid_text
from .codec import decode_object
from .errors import CorruptObject, HashMismatch, MissingBlock, UnsupportedHash
from .hashutil import get_hasher


def verify_block(cid: CID, data: bytes, *, offset: Optional[int] = None) -> None:
    """Check that ``data`` hashes to ``cid``.

    The expected CID is rebuilt from the claimed CID's version and codec and
    a fresh digest of ``data``, then compared in binary form.
    """
    code, _, _ = varint.decode_raw(cid.digest)
    hasher = get_hasher(code)
    if hasher is None:
        raise UnsupportedHash(f"no hasher for multihash code 0x{code:x}", cid=cid, offset=offset)
    expected = CID(cid.base, cid.version, cid.codec, (hasher.name, hasher.digest(data)))
    if bytes(expected) != bytes(cid):
        raise HashMismatch(f"block hashes to {cid_text(expected)}", cid=cid, offset=offset)


class BlockStore:
    """Verified blocks keyed by binary CID.

    Written only through ``put`` until ``seal`` is called; afterwards it is
    read-only for the rest of the export. ``clear`` drops every block when
    the owning reader closes.
    """

    def __init__(self):
        self._blocks: Dict[bytes, bytes] = {}
        self._sealed = False

    @classmethod
    def from_blocks(cls, blocks: Iterable) -> "BlockStore":
        store = cls()
        for blk in blocks:
            store.put(blk.cid, blk.data, offset=blk.offset)
        store.seal()
        return store

    def put(self, cid: CID, data: bytes, *, offset: Optional[int] = None) -> None:
        if self._sealed:
            raise RuntimeError("block store is sealed")
        verify_block(cid, data, offset=offset)
        self._blocks[bytes(cid)] = data

    def seal(self) -> None:
        self._sealed = True

    def get(self, cid: CID) -> bytes:
        try:
            return self._blocks[bytes(cid)]
        except KeyError:
            raise MissingBlock("referenced block is not in the container", cid=cid) from None

    def __contains__(self, cid: CID) -> bool:
        return bytes(cid) in self._blocks

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[CID]:
        for raw in self._blocks:
            yield CID.decode(raw)

    def clear(self) -> None:
        self._blocks.clear()


def load_object(store: BlockStore, cid: CID, decoder: Callable[[bytes], Any] = decode_object) -> Any:
    """Fetch and decode a block, tagging decode failures with its CID."""
    data = store.get(cid)
    try:
        return decoder(data)
    except CorruptObject as exc:
        if exc.cid is not None:
            raise
        raise CorruptObject(str(exc), cid=cid) from exc
