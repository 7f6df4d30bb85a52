"""
Vault Transaction Builder - PSBT Builder

This module provides classes for constructing Partially Signed Bitcoin
Transactions (BIP-174) with the Taproot input fields (BIP-371) needed for
script-path and key-path signing.
"""

import base64
import struct
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import Dict, List, Optional, Tuple

from .exceptions import InputValidationError, StructuralMismatchError
from .transaction import Transaction, TxIn, TxOut, SEQUENCE_FINAL
from .utils import serialize_key_value, serialize_witness


PSBT_MAGIC = b'psbt\xff'


class PSBTKeyType(Enum):
    """PSBT key types as defined in BIP-174 and BIP-371."""

    # Global types
    PSBT_GLOBAL_UNSIGNED_TX = 0x00
    PSBT_GLOBAL_VERSION = 0xfb

    # Input types
    PSBT_IN_NON_WITNESS_UTXO = 0x00
    PSBT_IN_WITNESS_UTXO = 0x01
    PSBT_IN_PARTIAL_SIG = 0x02
    PSBT_IN_SIGHASH_TYPE = 0x03
    PSBT_IN_FINAL_SCRIPTSIG = 0x07
    PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
    PSBT_IN_TAP_KEY_SIG = 0x13
    PSBT_IN_TAP_SCRIPT_SIG = 0x14
    PSBT_IN_TAP_LEAF_SCRIPT = 0x15
    PSBT_IN_TAP_INTERNAL_KEY = 0x17
    PSBT_IN_TAP_MERKLE_ROOT = 0x18

    # Output types
    PSBT_OUT_TAP_INTERNAL_KEY = 0x05


@dataclass
class PSBTKeyValue:
    """Represents a key-value pair in PSBT format."""
    key_type: int
    key_data: bytes = field(default_factory=bytes)
    value: bytes = field(default_factory=bytes)

    def serialize(self) -> bytes:
        """Serialize key-value pair to PSBT format."""
        key = bytes([self.key_type]) + self.key_data
        return serialize_key_value(key, self.value)


@dataclass
class TapLeafScript:
    """Leaf script entry of a Taproot input, keyed by its control block."""
    control_block: bytes
    script: bytes
    leaf_version: int = 0xc0


@dataclass
class PSBTInput:
    """Represents a PSBT input with associated metadata."""
    non_witness_utxo: Optional[bytes] = None
    witness_utxo: Optional[TxOut] = None
    partial_sigs: Dict[bytes, bytes] = field(default_factory=dict)
    sighash_type: Optional[int] = None
    final_scriptsig: Optional[bytes] = None
    final_scriptwitness: Optional[List[bytes]] = None
    tap_key_sig: Optional[bytes] = None
    # (x-only pubkey, leaf hash) -> signature
    tap_script_sigs: Dict[Tuple[bytes, bytes], bytes] = field(default_factory=dict)
    tap_leaf_scripts: List[TapLeafScript] = field(default_factory=list)
    tap_internal_key: Optional[bytes] = None
    tap_merkle_root: Optional[bytes] = None
    unknown: Dict[bytes, bytes] = field(default_factory=dict)

    def serialize(self) -> bytes:
        """Serialize input to PSBT format."""
        result = BytesIO()

        if self.non_witness_utxo:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_NON_WITNESS_UTXO.value, b'', self.non_witness_utxo)
            result.write(kv.serialize())

        if self.witness_utxo:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_WITNESS_UTXO.value, b'', self.witness_utxo.serialize())
            result.write(kv.serialize())

        for pubkey, sig in self.partial_sigs.items():
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_PARTIAL_SIG.value, pubkey, sig)
            result.write(kv.serialize())

        if self.sighash_type is not None:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_SIGHASH_TYPE.value, b'',
                              struct.pack('<I', self.sighash_type))
            result.write(kv.serialize())

        if self.final_scriptsig:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_FINAL_SCRIPTSIG.value, b'', self.final_scriptsig)
            result.write(kv.serialize())

        if self.final_scriptwitness:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_FINAL_SCRIPTWITNESS.value, b'',
                              serialize_witness(self.final_scriptwitness))
            result.write(kv.serialize())

        if self.tap_key_sig:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_TAP_KEY_SIG.value, b'', self.tap_key_sig)
            result.write(kv.serialize())

        for (pubkey, leaf_hash), sig in self.tap_script_sigs.items():
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_TAP_SCRIPT_SIG.value, pubkey + leaf_hash, sig)
            result.write(kv.serialize())

        for leaf in self.tap_leaf_scripts:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_TAP_LEAF_SCRIPT.value, leaf.control_block,
                              leaf.script + bytes([leaf.leaf_version]))
            result.write(kv.serialize())

        if self.tap_internal_key:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_TAP_INTERNAL_KEY.value, b'', self.tap_internal_key)
            result.write(kv.serialize())

        if self.tap_merkle_root:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_IN_TAP_MERKLE_ROOT.value, b'', self.tap_merkle_root)
            result.write(kv.serialize())

        for key, value in self.unknown.items():
            result.write(serialize_key_value(key, value))

        # End marker
        result.write(b'\x00')
        return result.getvalue()


@dataclass
class PSBTOutput:
    """Represents a PSBT output with associated metadata."""
    tap_internal_key: Optional[bytes] = None
    unknown: Dict[bytes, bytes] = field(default_factory=dict)

    def serialize(self) -> bytes:
        """Serialize output to PSBT format."""
        result = BytesIO()

        if self.tap_internal_key:
            kv = PSBTKeyValue(PSBTKeyType.PSBT_OUT_TAP_INTERNAL_KEY.value, b'', self.tap_internal_key)
            result.write(kv.serialize())

        for key, value in self.unknown.items():
            result.write(serialize_key_value(key, value))

        # End marker
        result.write(b'\x00')
        return result.getvalue()


class BasePSBTBuilder:
    """
    Base class for constructing PSBTs according to BIP-174.

    The builder keeps the unsigned transaction and one metadata map per
    input and output, in the same order.
    """

    def __init__(self, version: int = 2, locktime: int = 0):
        """
        Initialize PSBT builder.

        Args:
            version: Transaction version (default: 2)
            locktime: Transaction locktime (default: 0)
        """
        self.tx = Transaction(version=version, locktime=locktime)
        self.psbt_inputs: List[PSBTInput] = []
        self.psbt_outputs: List[PSBTOutput] = []

    @property
    def version(self) -> int:
        return self.tx.version

    @property
    def locktime(self) -> int:
        return self.tx.locktime

    @property
    def inputs(self) -> List[TxIn]:
        return self.tx.inputs

    @property
    def outputs(self) -> List[TxOut]:
        return self.tx.outputs

    def add_input(
        self,
        txid: str,
        vout: int,
        sequence: int = SEQUENCE_FINAL,
        witness_utxo: Optional[TxOut] = None,
        tap_internal_key: Optional[bytes] = None,
        tap_leaf_script: Optional[TapLeafScript] = None
    ) -> PSBTInput:
        """
        Add an input to the PSBT.

        Args:
            txid: Transaction ID of the UTXO to spend
            vout: Output index of the UTXO to spend
            sequence: Sequence number
            witness_utxo: Previous output (value and script) being spent
            tap_internal_key: 32-byte x-only internal key
            tap_leaf_script: Leaf script and control block for script-path spends

        Returns:
            The PSBT metadata map for the new input
        """
        if tap_internal_key is not None and len(tap_internal_key) != 32:
            raise InputValidationError(
                f"Taproot internal key must be 32 bytes, got {len(tap_internal_key)}"
            )

        self.tx.add_input(txid, vout, sequence=sequence)

        psbt_input = PSBTInput(witness_utxo=witness_utxo, tap_internal_key=tap_internal_key)
        if tap_leaf_script is not None:
            psbt_input.tap_leaf_scripts.append(tap_leaf_script)
        self.psbt_inputs.append(psbt_input)
        return psbt_input

    def add_output(self, script: bytes, amount: int) -> PSBTOutput:
        """
        Add an output to the PSBT.

        Args:
            script: Output script
            amount: Amount in satoshis

        Returns:
            The PSBT metadata map for the new output
        """
        if amount < 0:
            raise InputValidationError(f"Output amount cannot be negative: {amount}")

        self.tx.add_output(script, amount)
        psbt_output = PSBTOutput()
        self.psbt_outputs.append(psbt_output)
        return psbt_output

    def _serialize_global_data(self) -> bytes:
        """Serialize global PSBT data."""
        result = BytesIO()

        kv = PSBTKeyValue(PSBTKeyType.PSBT_GLOBAL_UNSIGNED_TX.value, b'',
                          self.tx.serialize(include_witness=False))
        result.write(kv.serialize())

        # End of global section
        result.write(b'\x00')
        return result.getvalue()

    def serialize(self) -> bytes:
        """
        Serialize the complete PSBT.

        Returns:
            Raw PSBT bytes
        """
        self.validate_structure()

        result = BytesIO()
        result.write(PSBT_MAGIC)
        result.write(self._serialize_global_data())

        for psbt_input in self.psbt_inputs:
            result.write(psbt_input.serialize())

        for psbt_output in self.psbt_outputs:
            result.write(psbt_output.serialize())

        return result.getvalue()

    def to_hex(self) -> str:
        return self.serialize().hex()

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode('ascii')

    def get_transaction_id(self) -> str:
        """Transaction id of the unsigned transaction."""
        return self.tx.txid

    def validate_structure(self) -> None:
        """
        Check that the metadata maps line up with the transaction.

        Raises:
            StructuralMismatchError: If counts disagree or the PSBT is empty
        """
        if not self.tx.inputs:
            raise StructuralMismatchError("PSBT must have at least one input")
        if not self.tx.outputs:
            raise StructuralMismatchError("PSBT must have at least one output")
        if len(self.psbt_inputs) != len(self.tx.inputs):
            raise StructuralMismatchError(
                f"PSBT input maps ({len(self.psbt_inputs)}) do not match "
                f"transaction inputs ({len(self.tx.inputs)})"
            )
        if len(self.psbt_outputs) != len(self.tx.outputs):
            raise StructuralMismatchError(
                f"PSBT output maps ({len(self.psbt_outputs)}) do not match "
                f"transaction outputs ({len(self.tx.outputs)})"
            )
