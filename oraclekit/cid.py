"""
Content addressing for program text.

Programs are addressed by the CIDv0 an IPFS node would assign to the same
bytes when added as a file (UnixFS inside dag-pb, sha2-256, base58btc), so
the address matches what the threshold network computes for the code it
executes.
"""
import hashlib
from typing import List, Tuple, Union

import base58

# Fixed-size chunker and balanced layout defaults used by IPFS importers
CHUNK_SIZE = 262144
MAX_LINKS_PER_NODE = 174

# Multihash prefix for sha2-256 with a 32-byte digest
SHA2_256_PREFIX = b"\x12\x20"

UNIXFS_TYPE_FILE = 2


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _field_varint(field_number: int, value: int) -> bytes:
    return _varint(field_number << 3) + _varint(value)


def _field_bytes(field_number: int, value: bytes) -> bytes:
    return _varint((field_number << 3) | 2) + _varint(len(value)) + value


def _unixfs_file(data: bytes = b"", filesize: int = 0, blocksizes: Tuple[int, ...] = ()) -> bytes:
    encoded = _field_varint(1, UNIXFS_TYPE_FILE)
    if data:
        encoded += _field_bytes(2, data)
    encoded += _field_varint(3, filesize)
    for size in blocksizes:
        encoded += _field_varint(4, size)
    return encoded


def _dag_pb_node(data: bytes, links: List[Tuple[bytes, int]] = ()) -> bytes:
    # Links are serialized before Data in canonical dag-pb
    encoded = b""
    for multihash, tsize in links:
        link = _field_bytes(1, multihash) + _field_bytes(2, b"") + _field_varint(3, tsize)
        encoded += _field_bytes(2, link)
    return encoded + _field_bytes(1, data)


def _multihash(block: bytes) -> bytes:
    return SHA2_256_PREFIX + hashlib.sha256(block).digest()


def _leaf(chunk: bytes) -> Tuple[bytes, int, int]:
    """Return (multihash, serialized block size, file bytes) for a leaf"""
    block = _dag_pb_node(_unixfs_file(chunk, len(chunk)))
    return _multihash(block), len(block), len(chunk)


def _parent(children: List[Tuple[bytes, int, int]]) -> Tuple[bytes, int, int]:
    filesize = sum(child[2] for child in children)
    unixfs = _unixfs_file(filesize=filesize, blocksizes=tuple(child[2] for child in children))
    block = _dag_pb_node(unixfs, [(child[0], child[1]) for child in children])
    # Tsize of a parent is its own block plus everything below it
    return _multihash(block), len(block) + sum(child[1] for child in children), filesize


def compute_cid(content: Union[str, bytes]) -> str:
    """
    Compute the CIDv0 of a piece of content.

    Args:
        content: Text (UTF-8 encoded) or raw bytes

    Returns:
        Base58btc CIDv0 string (starts with "Qm")
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    chunks = [content[i:i + CHUNK_SIZE] for i in range(0, len(content), CHUNK_SIZE)] or [b""]
    nodes = [_leaf(chunk) for chunk in chunks]

    # A single leaf is its own root
    while len(nodes) > 1:
        nodes = [
            _parent(nodes[i:i + MAX_LINKS_PER_NODE])
            for i in range(0, len(nodes), MAX_LINKS_PER_NODE)
        ]

    return base58.b58encode(nodes[0][0]).decode("ascii")


def cid_to_bytes(cid: str) -> bytes:
    """
    Convert a CIDv0 string to its raw multihash bytes.

    Args:
        cid: CIDv0 string

    Returns:
        34-byte multihash

    Raises:
        ValueError: If the CID is not a valid CIDv0
    """
    if not cid or not cid.startswith("Qm"):
        raise ValueError(f"Not a CIDv0: {cid!r}")
    raw = base58.b58decode(cid)
    if len(raw) != 34 or not raw.startswith(SHA2_256_PREFIX):
        raise ValueError(f"Not a sha2-256 CIDv0: {cid!r}")
    return raw


def bytes_to_cid(raw: bytes) -> str:
    """Inverse of cid_to_bytes"""
    if len(raw) != 34 or not raw.startswith(SHA2_256_PREFIX):
        raise ValueError("Expected a 34-byte sha2-256 multihash")
    return base58.b58encode(raw).decode("ascii")
