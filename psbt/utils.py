"""
Vault Transaction Builder - PSBT Utilities

This module provides the low-level encoding helpers shared by the transaction
codec, the PSBT writer and the PSBT reader.
"""

import hashlib
import struct
from typing import List, Tuple


OP_0 = 0x00
OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
OP_PUSHDATA4 = 0x4e
OP_1 = 0x51

P2TR_SCRIPT_LENGTH = 34


def varstr_parse(data: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """
    Parse variable-length string from bytes (missing from bitcoinlib).

    Args:
        data: Bytes to parse
        offset: Starting offset

    Returns:
        Tuple of (parsed_data, new_offset)
    """
    length, new_offset = parse_compact_size(data, offset)
    if new_offset + length > len(data):
        raise ValueError("Insufficient data for varstr")

    return data[new_offset:new_offset + length], new_offset + length


def serialize_compact_size(n: int) -> bytes:
    """
    Serialize integer as Bitcoin compact size.

    Args:
        n: Integer to serialize

    Returns:
        Compact size encoded bytes
    """
    if n < 0xfd:
        return struct.pack('<B', n)
    elif n <= 0xffff:
        return b'\xfd' + struct.pack('<H', n)
    elif n <= 0xffffffff:
        return b'\xfe' + struct.pack('<I', n)
    else:
        return b'\xff' + struct.pack('<Q', n)


def serialize_varstr(data: bytes) -> bytes:
    """
    Serialize bytes with a compact size length prefix.

    A lone 0x00 keeps its prefix; bitcoinlib's varstr emits it bare as OP_0.
    """
    return serialize_compact_size(len(data)) + data


def parse_compact_size(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Parse Bitcoin compact size from bytes.

    Args:
        data: Bytes to parse
        offset: Starting offset in bytes

    Returns:
        Tuple of (value, new_offset)
    """
    if offset >= len(data):
        raise ValueError("Insufficient data for compact size")

    first_byte = data[offset]

    if first_byte < 0xfd:
        return first_byte, offset + 1
    elif first_byte == 0xfd:
        if offset + 3 > len(data):
            raise ValueError("Insufficient data for 2-byte compact size")
        return struct.unpack('<H', data[offset + 1:offset + 3])[0], offset + 3
    elif first_byte == 0xfe:
        if offset + 5 > len(data):
            raise ValueError("Insufficient data for 4-byte compact size")
        return struct.unpack('<I', data[offset + 1:offset + 5])[0], offset + 5
    else:  # 0xff
        if offset + 9 > len(data):
            raise ValueError("Insufficient data for 8-byte compact size")
        return struct.unpack('<Q', data[offset + 1:offset + 9])[0], offset + 9


def serialize_key_value(key: bytes, value: bytes) -> bytes:
    """
    Serialize key-value pair in PSBT format.

    Args:
        key: Key bytes
        value: Value bytes

    Returns:
        Serialized key-value pair
    """
    return serialize_varstr(key) + serialize_varstr(value)


def serialize_witness(stack: List[bytes]) -> bytes:
    """Serialize a witness stack as item count followed by each item."""
    return serialize_compact_size(len(stack)) + b''.join(serialize_varstr(item) for item in stack)


def parse_witness(data: bytes, offset: int = 0) -> Tuple[List[bytes], int]:
    """
    Parse a witness stack.

    Args:
        data: Bytes to parse
        offset: Starting offset

    Returns:
        Tuple of (stack items, new_offset)
    """
    count, offset = parse_compact_size(data, offset)
    stack = []
    for _ in range(count):
        item, offset = varstr_parse(data, offset)
        stack.append(item)
    return stack, offset


def double_sha256(data: bytes) -> bytes:
    """
    Calculate double SHA256 hash (used for transaction IDs).

    Args:
        data: Data to hash

    Returns:
        Double SHA256 hash
    """
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """
    Serialize transaction outpoint.

    Args:
        txid: Transaction ID as hex string (display order)
        vout: Output index

    Returns:
        Serialized outpoint (32 bytes txid + 4 bytes vout)
    """
    txid_bytes = bytes.fromhex(txid)[::-1]
    if len(txid_bytes) != 32:
        raise ValueError(f"Invalid txid length: {len(txid_bytes)} bytes")
    return txid_bytes + struct.pack('<I', vout)


def parse_outpoint(data: bytes, offset: int = 0) -> Tuple[str, int, int]:
    """
    Parse transaction outpoint.

    Args:
        data: Bytes to parse
        offset: Starting offset

    Returns:
        Tuple of (txid, vout, new_offset)
    """
    if offset + 36 > len(data):
        raise ValueError("Insufficient data for outpoint")

    txid = data[offset:offset + 32][::-1].hex()
    vout = struct.unpack('<I', data[offset + 32:offset + 36])[0]

    return txid, vout, offset + 36


def decompile_script(script: bytes) -> List[object]:
    """
    Split a script into opcodes and pushed data.

    Args:
        script: Raw script bytes

    Returns:
        List of opcodes (int) and data pushes (bytes)

    Raises:
        ValueError: If a push runs past the end of the script
    """
    chunks = []
    i = 0
    while i < len(script):
        opcode = script[i]
        i += 1
        if OP_0 < opcode < OP_PUSHDATA1:
            size = opcode
        elif opcode == OP_PUSHDATA1:
            if i + 1 > len(script):
                raise ValueError("Truncated OP_PUSHDATA1")
            size = script[i]
            i += 1
        elif opcode == OP_PUSHDATA2:
            if i + 2 > len(script):
                raise ValueError("Truncated OP_PUSHDATA2")
            size = struct.unpack('<H', script[i:i + 2])[0]
            i += 2
        elif opcode == OP_PUSHDATA4:
            if i + 4 > len(script):
                raise ValueError("Truncated OP_PUSHDATA4")
            size = struct.unpack('<I', script[i:i + 4])[0]
            i += 4
        else:
            chunks.append(opcode)
            continue

        if i + size > len(script):
            raise ValueError(f"Push of {size} bytes exceeds script length")
        chunks.append(script[i:i + size])
        i += size

    return chunks


def is_valid_script(script_hex: str) -> bool:
    """Check that a hex script decodes and its pushes are well formed."""
    try:
        decompile_script(bytes.fromhex(script_hex))
    except (ValueError, TypeError):
        return False
    return True


def is_p2tr_script(script: bytes) -> bool:
    """Return True for a segwit v1 (Taproot) output script."""
    return (
        len(script) == P2TR_SCRIPT_LENGTH
        and script[0] == OP_1
        and script[1] == 0x20
    )
