"""
Vault Transaction Builder - Transaction Codec

This module implements the standard Bitcoin transaction wire format (with
optional segwit marker, flag and witness section) used by the funder, the
split builder and the PSBT reader and writer.
"""

import struct
from dataclasses import dataclass, field
from io import BytesIO
from typing import List

from .utils import (
    serialize_compact_size,
    parse_compact_size,
    varstr_parse,
    serialize_varstr,
    serialize_outpoint,
    parse_outpoint,
    serialize_witness,
    parse_witness,
    double_sha256,
)


SEQUENCE_FINAL = 0xffffffff
SEGWIT_MARKER = 0x00
SEGWIT_FLAG = 0x01


@dataclass
class TxIn:
    """Transaction input referencing a previous outpoint."""
    txid: str
    vout: int
    script_sig: bytes = b''
    sequence: int = SEQUENCE_FINAL
    witness: List[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        """Serialize input without its witness."""
        return (
            serialize_outpoint(self.txid, self.vout)
            + serialize_varstr(self.script_sig)
            + struct.pack('<I', self.sequence)
        )


@dataclass
class TxOut:
    """Transaction output: value in satoshis and locking script."""
    value: int
    script: bytes

    def serialize(self) -> bytes:
        """Serialize output as 8-byte value and script."""
        return struct.pack('<Q', self.value) + serialize_varstr(self.script)

    @classmethod
    def parse(cls, data: bytes, offset: int = 0):
        """Parse an output, returning (TxOut, new_offset)."""
        if offset + 8 > len(data):
            raise ValueError("Insufficient data for output value")
        value = struct.unpack('<Q', data[offset:offset + 8])[0]
        script, offset = varstr_parse(data, offset + 8)
        return cls(value=value, script=script), offset


@dataclass
class Transaction:
    """
    Bitcoin transaction with wire serialization.

    Transaction ids are computed from the non-witness serialization, so they
    are fixed before any signature exists.
    """
    version: int = 2
    inputs: List[TxIn] = field(default_factory=list)
    outputs: List[TxOut] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(tx_input.witness for tx_input in self.inputs)

    def add_input(self, txid: str, vout: int, sequence: int = SEQUENCE_FINAL) -> TxIn:
        tx_input = TxIn(txid=txid, vout=vout, sequence=sequence)
        self.inputs.append(tx_input)
        return tx_input

    def add_output(self, script: bytes, value: int) -> TxOut:
        tx_output = TxOut(value=value, script=script)
        self.outputs.append(tx_output)
        return tx_output

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize transaction to wire format.

        Args:
            include_witness: Emit marker, flag and witnesses when any input has one

        Returns:
            Raw transaction bytes
        """
        result = BytesIO()
        segwit = include_witness and self.has_witness

        result.write(struct.pack('<I', self.version))
        if segwit:
            result.write(bytes([SEGWIT_MARKER, SEGWIT_FLAG]))

        result.write(serialize_compact_size(len(self.inputs)))
        for tx_input in self.inputs:
            result.write(tx_input.serialize())

        result.write(serialize_compact_size(len(self.outputs)))
        for tx_output in self.outputs:
            result.write(tx_output.serialize())

        if segwit:
            for tx_input in self.inputs:
                result.write(serialize_witness(tx_input.witness))

        result.write(struct.pack('<I', self.locktime))
        return result.getvalue()

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Transaction id in display (big-endian) hex."""
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    @classmethod
    def parse(cls, data: bytes) -> 'Transaction':
        """
        Parse a transaction with at least one input.

        Zero-input segwit templates are ambiguous in this encoding and are
        handled by psbt.template instead.

        Args:
            data: Raw transaction bytes

        Returns:
            Parsed Transaction

        Raises:
            ValueError: On truncated or trailing data
        """
        if len(data) < 10:
            raise ValueError(f"Transaction too short: {len(data)} bytes")

        version = struct.unpack('<I', data[0:4])[0]
        offset = 4

        segwit = data[offset] == SEGWIT_MARKER and data[offset + 1] == SEGWIT_FLAG
        if segwit:
            offset += 2

        input_count, offset = parse_compact_size(data, offset)
        inputs = []
        for _ in range(input_count):
            txid, vout, offset = parse_outpoint(data, offset)
            script_sig, offset = varstr_parse(data, offset)
            if offset + 4 > len(data):
                raise ValueError("Insufficient data for input sequence")
            sequence = struct.unpack('<I', data[offset:offset + 4])[0]
            offset += 4
            inputs.append(TxIn(txid=txid, vout=vout, script_sig=script_sig, sequence=sequence))

        output_count, offset = parse_compact_size(data, offset)
        outputs = []
        for _ in range(output_count):
            tx_output, offset = TxOut.parse(data, offset)
            outputs.append(tx_output)

        if segwit:
            for tx_input in inputs:
                tx_input.witness, offset = parse_witness(data, offset)

        if offset + 4 != len(data):
            raise ValueError(
                f"Unexpected transaction length: {len(data) - offset} bytes after outputs"
            )
        locktime = struct.unpack('<I', data[offset:offset + 4])[0]

        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    @classmethod
    def from_hex(cls, tx_hex: str) -> 'Transaction':
        return cls.parse(bytes.fromhex(tx_hex))
