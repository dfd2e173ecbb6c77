from __future__ import annotations

import argparse
import json as _json
import os
import sys
import time
from collections import Counter
from typing import List, Optional

from carrepo.archive import write_tar, write_tree
from carrepo.cidutil import cid_text
from carrepo.constants import DEFAULT_PREFIX, DEFAULT_TAR_NAME
from carrepo.errors import (
    CarRepoError,
    HashMismatch,
    MalformedContainer,
    MissingBlock,
    UnsupportedHash,
)
from carrepo.repo import RepoReader, split_key


def _default_output(car: str) -> str:
    return os.path.join(os.path.dirname(os.path.abspath(car)), DEFAULT_TAR_NAME)


def cmd_export(car: str, *, output: Optional[str] = None, prefix: str = DEFAULT_PREFIX, quiet: bool = False) -> bool:
    """Export every record of a repository CAR into a tar archive.

    Args:
        car: Path to the repository .car file.
        output: Destination .tar path (default: repo.tar beside the input).
        prefix: Top-level directory inside the archive.
        quiet: Only print the final summary.
    """
    target = output or _default_output(car)
    t0 = time.time()

    def _progress(count: int, name: str) -> None:
        if not quiet:
            print(f" exporting: {count:>6} {name}")

    with RepoReader(car) as r:
        if not quiet:
            print(f"Verified {r.block_count} block(s); repository {r.commit.did} rev {r.commit.rev}")
        with open(target, "wb") as sink:
            count = write_tar(r.records(), sink, prefix=prefix, progress=_progress)
    dt = time.time() - t0
    print(f"Done: exported {count} record(s) to {target} in {dt:.1f}s")
    return True


def cmd_unpack(car: str, *, outdir: str = ".", exists: str = "overwrite", quiet: bool = False) -> bool:
    """Write every record as a JSON file under ``outdir/<collection>/<rkey>.json``."""

    actions: Counter = Counter()

    def _progress(count: int, rel: str, action: str) -> None:
        actions[action] += 1
        if quiet:
            return
        if action == "skip":
            print(f"    skipping: {rel} (exists)")
        else:
            print(f"   unpacking: {count:>6} {rel}")

    with RepoReader(car) as r:
        written = write_tree(r.records(), outdir, exists=exists, progress=_progress)
    skipped = actions["skip"]
    print(f"Done: wrote {written} record(s) to {outdir}; skipped={skipped}")
    return True


def cmd_list(car: str) -> bool:
    """List record paths and their CIDs without decoding record values."""
    with RepoReader(car) as r:
        for key, cid in r.walk():
            collection, rkey = split_key(key)
            print(f"{collection}/{rkey}\t{cid_text(cid)}")
    return True


def cmd_info(car: str) -> bool:
    """Show commit fields and per-collection record counts."""
    with RepoReader(car) as r:
        c = r.commit
        per_collection: Counter = Counter()
        for key, _cid in r.walk():
            collection, _rkey = split_key(key)
            per_collection[collection] += 1
        print(f"Repository: {car}")
        print(f"  Root: {cid_text(r.root)}")
        print(f"  DID: {c.did}")
        print(f"  Rev: {c.rev}")
        print(f"  Data: {cid_text(c.data)}")
        print(f"  Prev: {cid_text(c.prev) if c.prev is not None else '-'}")
        print(f"  Blocks: {r.block_count}")
        print(f"  Records: {sum(per_collection.values())}")
        for name in sorted(per_collection):
            print(f"    {name}: {per_collection[name]}")
    return True


def cmd_verify(car: str, *, as_json: bool = False) -> bool:
    """Verify every block hash, walk the tree and decode every record.

    Prints:
        "OK" on success, "FAIL: <reason>" otherwise.
    """
    res = {"path": car, "status": "ok", "blocks": 0, "records": 0}
    try:
        with RepoReader(car) as r:
            res["blocks"] = r.block_count
            res["records"] = r.verify()
    except (HashMismatch, UnsupportedHash, MissingBlock, MalformedContainer) as exc:
        # the container itself is damaged or incomplete
        res["status"] = "fail"
        res["message"] = f"{type(exc).__name__}: {exc}"
        res["damaged"] = True
    except CarRepoError as exc:
        res["status"] = "fail"
        res["message"] = f"{type(exc).__name__}: {exc}"
        res["damaged"] = False
    ok = res["status"] == "ok"
    if as_json:
        print(_json.dumps(res))
    elif ok:
        print("OK")
    else:
        print(f"FAIL: {res['message']}")
    return ok


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="carrepo",
        description="Extract records from a repository CAR export",
        epilog="Every block is hash-verified before any record is produced.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_export = sub.add_parser("export", help="Export records into a tar archive")
    ap_export.add_argument("car", help="Repository .car path")
    ap_export.add_argument("--output", "-o", help=f"Output .tar path (default: {DEFAULT_TAR_NAME} beside the input)")
    ap_export.add_argument("--prefix", default=DEFAULT_PREFIX, help=f"Top-level directory in the archive (default: {DEFAULT_PREFIX})")
    ap_export.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_unpack = sub.add_parser("unpack", help="Write records as JSON files into a directory")
    ap_unpack.add_argument("car", help="Repository .car path")
    ap_unpack.add_argument("--outdir", default=".", help="Output directory")
    ap_unpack.add_argument(
        "--exists",
        choices=["overwrite", "skip", "fail"],
        default="overwrite",
        help="What to do if a destination file exists (default: overwrite)",
    )
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List record paths and CIDs")
    ap_list.add_argument("car", help="Repository .car path")

    ap_info = sub.add_parser("info", help="Show commit and record counts")
    ap_info.add_argument("car", help="Repository .car path")

    ap_verify = sub.add_parser("verify", help="Verify blocks, tree and records")
    ap_verify.add_argument("car", help="Repository .car path")
    ap_verify.add_argument("--json", action="store_true", help="Emit JSON result")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "export":
            cmd_export(args.car, output=args.output, prefix=args.prefix, quiet=args.quiet)
        elif args.cmd == "unpack":
            cmd_unpack(args.car, outdir=args.outdir, exists=args.exists, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.car)
        elif args.cmd == "info":
            cmd_info(args.car)
        elif args.cmd == "verify":
            ok = cmd_verify(args.car, as_json=args.json)
            sys.exit(0 if ok else 1)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except CarRepoError as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(2)
    except (OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
