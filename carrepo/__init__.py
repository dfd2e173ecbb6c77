"""
carrepo: record extraction for repository CAR exports.

A repository export is a CARv1 container whose single root is a signed commit
(version 3). The commit's ``data`` link is the root of a Merkle Search Tree
keyed by ``<collection>/<rkey>``; its leaves link to DAG-CBOR records.

Features:

- Streaming CARv1 reader with bounds-checked framing.
- Every block is hashed and checked against its CID before use.
- Explicit-stack, ascending-order MST walk with prefix-compressed keys.
- Lazy record export, plus tar and directory writers and a CLI.

Multiple roots, commit signature checks and tree mutation are not supported.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "car",
    "blockstore",
    "mst",
    "repo",
    "archive",
]

# Programmatic API: carrepo.repo.export_records / RepoReader, carrepo.archive.write_tar.
