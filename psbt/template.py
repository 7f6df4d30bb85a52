"""
Vault Transaction Builder - Unfunded Template Parser

The script engine emits peg-in transactions with zero inputs in segwit
encoding. Generic parsers read the 0x00 input count as the segwit marker and
reject them, so templates are decoded here field by field.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import List

from .exceptions import InvalidTemplateError
from .transaction import TxOut


logger = logging.getLogger(__name__)


# Byte layout of an unfunded template. Every field read goes through this table.
VERSION_SIZE = 4
MARKER_FLAG = b'\x00\x01'
MARKER_FLAG_SIZE = 2
INPUT_COUNT_SIZE = 1
OUTPUT_COUNT_SIZE = 1
OUTPUT_VALUE_SIZE = 8
SCRIPT_LENGTH_SIZE = 1
LOCKTIME_SIZE = 4


@dataclass
class UnfundedTemplate:
    """Decoded 0-input transaction template."""
    version: int
    locktime: int
    outputs: List[TxOut] = field(default_factory=list)


class _TemplateReader:
    """Sequential reader over template bytes with bounds checking."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def read(self, size: int, what: str) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise InvalidTemplateError(
                f"Template truncated reading {what} at offset {self.offset}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def peek(self, size: int) -> bytes:
        return self.data[self.offset:self.offset + size]

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset


def parse_unfunded_template(tx_hex: str) -> UnfundedTemplate:
    """
    Parse an unfunded transaction template with zero inputs.

    Layout: version (4 LE), marker/flag 0x0001 (when present), input count
    (1 byte, must be 0), output count (1 byte, at least 1), then per output
    value (8 LE), script length (1 byte) and script, and finally locktime
    (4 LE).

    Args:
        tx_hex: Template transaction as hex

    Returns:
        UnfundedTemplate with version, locktime and outputs

    Raises:
        InvalidTemplateError: If the template is malformed or has inputs
    """
    try:
        data = bytes.fromhex(tx_hex)
    except (ValueError, TypeError) as e:
        raise InvalidTemplateError(f"Invalid template hex: {e}")

    reader = _TemplateReader(data)

    version = struct.unpack('<I', reader.read(VERSION_SIZE, "version"))[0]

    if reader.peek(MARKER_FLAG_SIZE) == MARKER_FLAG:
        reader.read(MARKER_FLAG_SIZE, "marker and flag")

    input_count = reader.read(INPUT_COUNT_SIZE, "input count")[0]
    if input_count != 0:
        raise InvalidTemplateError(f"Expected 0 inputs in unfunded template, got {input_count}")

    output_count = reader.read(OUTPUT_COUNT_SIZE, "output count")[0]
    if output_count < 1:
        raise InvalidTemplateError(
            f"Expected at least 1 output in unfunded template, got {output_count}"
        )

    outputs = []
    for index in range(output_count):
        value = struct.unpack('<Q', reader.read(OUTPUT_VALUE_SIZE, f"output {index} value"))[0]
        script_length = reader.read(SCRIPT_LENGTH_SIZE, f"output {index} script length")[0]
        script = reader.read(script_length, f"output {index} script")
        outputs.append(TxOut(value=value, script=script))

    locktime = struct.unpack('<I', reader.read(LOCKTIME_SIZE, "locktime"))[0]

    if reader.remaining:
        raise InvalidTemplateError(
            f"Unexpected {reader.remaining} trailing bytes after template locktime"
        )

    logger.debug(f"Parsed unfunded template: version={version}, outputs={len(outputs)}, "
                 f"locktime={locktime}")

    return UnfundedTemplate(version=version, locktime=locktime, outputs=outputs)
