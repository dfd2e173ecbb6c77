from __future__ import annotations

import argparse
import os
import random
import sys
from typing import Iterable, List, Optional, Tuple

from multiformats import CID

from carrepo.car import CarReader
from carrepo.cidutil import cid_text
from carrepo.errors import CarRepoError


def _flip_bytes(path: str, offsets: Iterable[int], xor_val: int = 0xFF) -> int:
    """XOR the byte at each offset in place; returns how many were flipped."""
    size = os.path.getsize(path)
    offsets = list(offsets)
    for off in offsets:
        if not 0 <= off < size:
            raise ValueError(f"Offset {off} outside file (size {size})")
    with open(path, "r+b") as f:
        for off in offsets:
            f.seek(off)
            b = f.read(1)
            f.seek(off)
            f.write(bytes([b[0] ^ (xor_val & 0xFF)]))
        f.flush()
        os.fsync(f.fileno())
    return len(offsets)


def _payload_spans(path: str) -> Tuple[int, List[Tuple[int, int, CID]]]:
    """Header length and (payload_offset, payload_len, cid) for every block, in container order."""
    spans = []
    with open(path, "rb") as f:
        car = CarReader(f)
        header_end = car.pos
        for blk in car.blocks():
            # the payload is the tail of the section, which ends at the reader position
            spans.append((car.pos - len(blk.data), len(blk.data), blk.cid))
    return header_end, spans


def _describe(path: str, offset: int) -> str:
    try:
        header_end, spans = _payload_spans(path)
    except CarRepoError as exc:
        return f"unreadable container ({type(exc).__name__})"
    if offset < header_end:
        return "header"
    for i, (start, length, cid) in enumerate(spans):
        if start <= offset < start + length:
            return f"block {i} payload ({cid_text(cid)})"
        if offset < start:
            return f"block {i} framing"
    return "past last block"


def cmd_by_offset(args: argparse.Namespace) -> None:
    where = _describe(args.car, args.offset)
    _flip_bytes(args.car, [args.offset], xor_val=args.xor)
    print(f"Flipped 1 byte at offset {args.offset} in {where}")


def cmd_block(args: argparse.Namespace) -> None:
    _header_end, spans = _payload_spans(args.car)
    if not 0 <= args.index < len(spans):
        raise ValueError(f"Block index {args.index} out of range (0..{len(spans) - 1})")
    start, length, cid = spans[args.index]
    if args.within < 0 or args.within >= length:
        raise ValueError(f"--within must be within payload length (0..{length - 1})")
    off = start + args.within
    _flip_bytes(args.car, [off], xor_val=args.xor)
    print(f"Flipped 1 byte in block {args.index} ({cid_text(cid)}) at offset {off}")


def cmd_random(args: argparse.Namespace) -> None:
    _header_end, spans = _payload_spans(args.car)
    total = sum(length for _start, length, _cid in spans)
    if not 0 < args.count <= total:
        raise ValueError(f"--count must be between 1 and {total} (payload bytes in the file)")
    rng = random.Random(args.seed)
    # distinct positions, so no flip undoes another
    picks = sorted(rng.sample(range(total), args.count))
    offsets = []
    touched = set()
    base = 0
    it = iter(picks)
    pick = next(it, None)
    for i, (start, length, _cid) in enumerate(spans):
        while pick is not None and pick < base + length:
            offsets.append(start + (pick - base))
            touched.add(i)
            pick = next(it, None)
        base += length
    flipped = _flip_bytes(args.car, offsets, xor_val=args.xor)
    print(f"Flipped {flipped} payload byte(s) across {len(touched)} block(s): {sorted(touched)}")


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="carrepo.tamper", description="Damage repository CAR files for testing")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_off = sub.add_parser("by-offset", help="Flip one byte at an absolute file offset")
    p_off.add_argument("car", help="Path to .car file")
    p_off.add_argument("--offset", type=int, required=True, help="Absolute byte offset in the file")
    p_off.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_off.set_defaults(func=cmd_by_offset)

    p_blk = sub.add_parser("block", help="Flip a byte inside one block's payload")
    p_blk.add_argument("car", help="Path to .car file")
    p_blk.add_argument("--index", type=int, default=0, help="Block index in container order (default 0)")
    p_blk.add_argument("--within", type=int, default=0, help="Byte offset within the payload (default 0)")
    p_blk.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_blk.set_defaults(func=cmd_block)

    p_rand = sub.add_parser("random", help="Flip N distinct random bytes inside block payloads")
    p_rand.add_argument("car", help="Path to .car file")
    p_rand.add_argument("--count", type=int, default=1, help="Number of payload bytes to flip (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_rand.set_defaults(func=cmd_random)

    args = ap.parse_args(argv)
    try:
        args.func(args)
    except (CarRepoError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
