"""
Vault Transaction Builder - PSBT Parser

This module deserializes PSBTs returned by wallets so that signatures and
finalized witnesses can be read back.
"""

import base64
import binascii
import logging
import struct
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Union

from .builder import PSBT_MAGIC, PSBTInput, PSBTKeyType, PSBTOutput, TapLeafScript
from .exceptions import PSBTParsingError
from .transaction import Transaction, TxOut
from .utils import parse_witness


logger = logging.getLogger(__name__)


@dataclass
class PSBTGlobal:
    """Represents global fields in a PSBT."""
    unsigned_tx: Transaction = None
    version: int = 0
    unknown: Dict[bytes, bytes] = field(default_factory=dict)


@dataclass
class ParsedPSBT:
    """Represents a fully parsed PSBT."""
    psbt_global: PSBTGlobal
    inputs: List[PSBTInput]
    outputs: List[PSBTOutput]

    @property
    def unsigned_tx(self) -> Transaction:
        return self.psbt_global.unsigned_tx


class PSBTParser:
    """
    Parser for BIP-174 PSBTs.

    Accepts raw bytes, hex or base64 encodings and returns the unsigned
    transaction together with one metadata map per input and output.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def parse(self, psbt_data: Union[bytes, str]) -> ParsedPSBT:
        """
        Parse PSBT data.

        Args:
            psbt_data: PSBT as bytes, hex string or base64 string

        Returns:
            ParsedPSBT with global, input and output maps

        Raises:
            PSBTParsingError: If the data is not a well-formed PSBT
        """
        data = self._decode(psbt_data)

        try:
            psbt_global, inputs, outputs = self._parse_psbt_structure(data)
        except PSBTParsingError:
            raise
        except (ValueError, IndexError, struct.error) as e:
            raise PSBTParsingError(f"Failed to parse PSBT structure: {e}")

        self.logger.debug(f"Parsed PSBT with {len(inputs)} inputs and {len(outputs)} outputs")
        return ParsedPSBT(psbt_global=psbt_global, inputs=inputs, outputs=outputs)

    def _decode(self, psbt_data: Union[bytes, str]) -> bytes:
        """Normalize hex or base64 input to raw bytes."""
        if isinstance(psbt_data, bytes):
            return psbt_data

        if not isinstance(psbt_data, str) or not psbt_data:
            raise PSBTParsingError("PSBT data must be a non-empty string or bytes")

        text = psbt_data.strip()
        if text.lower().startswith(PSBT_MAGIC.hex()):
            try:
                return bytes.fromhex(text)
            except ValueError as e:
                raise PSBTParsingError(f"Invalid PSBT hex: {e}")

        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise PSBTParsingError(f"Invalid PSBT encoding (expected hex or base64): {e}")

    def _parse_psbt_structure(self, data: bytes):
        """
        Parse the core PSBT structure.

        Args:
            data: Raw PSBT bytes

        Returns:
            Tuple of (global fields, inputs, outputs)
        """
        if not data.startswith(PSBT_MAGIC):
            raise PSBTParsingError("Invalid PSBT magic bytes")

        stream = BytesIO(data[len(PSBT_MAGIC):])

        psbt_global = self._parse_global_fields(stream)

        if psbt_global.unsigned_tx is None:
            raise PSBTParsingError("Missing unsigned transaction in global fields")

        tx = psbt_global.unsigned_tx

        inputs = [self._parse_input_fields(stream) for _ in range(len(tx.inputs))]
        outputs = [self._parse_output_fields(stream) for _ in range(len(tx.outputs))]

        return psbt_global, inputs, outputs

    def _read_compact_size(self, stream: BytesIO) -> int:
        first = stream.read(1)
        if not first:
            raise PSBTParsingError("Unexpected end of PSBT data")

        first_byte = first[0]
        if first_byte < 0xfd:
            return first_byte
        sizes = {0xfd: ('<H', 2), 0xfe: ('<I', 4), 0xff: ('<Q', 8)}
        fmt, size = sizes[first_byte]
        raw = stream.read(size)
        if len(raw) < size:
            raise PSBTParsingError("Unexpected end while reading compact size")
        return struct.unpack(fmt, raw)[0]

    def _read_pairs(self, stream: BytesIO, section: str):
        """Yield (key, value) pairs of one map until its separator."""
        while True:
            key_len = self._read_compact_size(stream)
            if key_len == 0:
                return

            key = stream.read(key_len)
            if len(key) < key_len:
                raise PSBTParsingError(f"Unexpected end of {section} fields")

            value_len = self._read_compact_size(stream)
            value = stream.read(value_len)
            if len(value) < value_len:
                raise PSBTParsingError(f"Unexpected end of {section} value")

            yield key, value

    def _parse_global_fields(self, stream: BytesIO) -> PSBTGlobal:
        """Parse PSBT global fields."""
        psbt_global = PSBTGlobal()

        for key, value in self._read_pairs(stream, "global"):
            key_type = key[0]
            if key_type == PSBTKeyType.PSBT_GLOBAL_UNSIGNED_TX.value and len(key) == 1:
                try:
                    psbt_global.unsigned_tx = Transaction.parse(value)
                except ValueError as e:
                    raise PSBTParsingError(f"Invalid unsigned transaction: {e}")
            elif key_type == PSBTKeyType.PSBT_GLOBAL_VERSION.value and len(key) == 1:
                psbt_global.version = struct.unpack('<I', value)[0]
            else:
                psbt_global.unknown[key] = value

        return psbt_global

    def _parse_input_fields(self, stream: BytesIO) -> PSBTInput:
        """Parse PSBT input fields."""
        psbt_input = PSBTInput()

        for key, value in self._read_pairs(stream, "input"):
            key_type = key[0]
            key_data = key[1:]

            if key_type == PSBTKeyType.PSBT_IN_NON_WITNESS_UTXO.value:
                psbt_input.non_witness_utxo = value
            elif key_type == PSBTKeyType.PSBT_IN_WITNESS_UTXO.value:
                psbt_input.witness_utxo, _ = TxOut.parse(value)
            elif key_type == PSBTKeyType.PSBT_IN_PARTIAL_SIG.value:
                psbt_input.partial_sigs[key_data] = value
            elif key_type == PSBTKeyType.PSBT_IN_SIGHASH_TYPE.value:
                psbt_input.sighash_type = struct.unpack('<I', value)[0]
            elif key_type == PSBTKeyType.PSBT_IN_FINAL_SCRIPTSIG.value:
                psbt_input.final_scriptsig = value
            elif key_type == PSBTKeyType.PSBT_IN_FINAL_SCRIPTWITNESS.value:
                psbt_input.final_scriptwitness, _ = parse_witness(value)
            elif key_type == PSBTKeyType.PSBT_IN_TAP_KEY_SIG.value:
                psbt_input.tap_key_sig = value
            elif key_type == PSBTKeyType.PSBT_IN_TAP_SCRIPT_SIG.value:
                if len(key_data) != 64:
                    raise PSBTParsingError(
                        f"Invalid tap script sig key length: {len(key_data)} bytes"
                    )
                psbt_input.tap_script_sigs[(key_data[:32], key_data[32:])] = value
            elif key_type == PSBTKeyType.PSBT_IN_TAP_LEAF_SCRIPT.value:
                if not value:
                    raise PSBTParsingError("Empty tap leaf script value")
                psbt_input.tap_leaf_scripts.append(
                    TapLeafScript(control_block=key_data, script=value[:-1], leaf_version=value[-1])
                )
            elif key_type == PSBTKeyType.PSBT_IN_TAP_INTERNAL_KEY.value:
                psbt_input.tap_internal_key = value
            elif key_type == PSBTKeyType.PSBT_IN_TAP_MERKLE_ROOT.value:
                psbt_input.tap_merkle_root = value
            else:
                psbt_input.unknown[key] = value

        return psbt_input

    def _parse_output_fields(self, stream: BytesIO) -> PSBTOutput:
        """Parse PSBT output fields."""
        psbt_output = PSBTOutput()

        for key, value in self._read_pairs(stream, "output"):
            if key[0] == PSBTKeyType.PSBT_OUT_TAP_INTERNAL_KEY.value and len(key) == 1:
                psbt_output.tap_internal_key = value
            else:
                psbt_output.unknown[key] = value

        return psbt_output


def parse_psbt(psbt_data: Union[bytes, str]) -> ParsedPSBT:
    """
    Parse PSBT from bytes, hex or base64.

    Args:
        psbt_data: Encoded PSBT

    Returns:
        ParsedPSBT object
    """
    return PSBTParser().parse(psbt_data)
