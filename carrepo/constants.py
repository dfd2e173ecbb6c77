# CAR container
CAR_VERSION = 1

# Repository commit
COMMIT_VERSION = 3

# Multihash codes
MH_SHA2_256 = 0x12
MH_SHA2_256_LEN = 32

# CBOR tag used by DAG-CBOR for CID links; payload is 0x00 + binary CID
CBOR_TAG_CID = 42
CID_MULTIBASE_IDENTITY = b"\x00"

# DAG-CBOR integers are limited to the CBOR major type 0/1 range
DAG_CBOR_INT_MAX = 2**64 - 1
DAG_CBOR_INT_MIN = -(2**64)

# CIDv0 is a bare sha2-256 multihash (0x12 0x20 + 32 bytes)
CIDV0_PREFIX = bytes([MH_SHA2_256, MH_SHA2_256_LEN])
CIDV0_LEN = 2 + MH_SHA2_256_LEN

# A varint carrying a 64-bit length never exceeds 9 bytes
MAX_VARINT_LEN = 9

# Container payloads are read in pieces of at most this size
READ_CHUNK = 1 << 20

# Export layout
DEFAULT_PREFIX = "repo"
DEFAULT_EXT = "json"
DEFAULT_TAR_NAME = "repo.tar"
KEY_SEPARATOR = "/"
