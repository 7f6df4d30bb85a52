"""
Vault Transaction Builder - UTXO Models

Value objects describing spendable outputs and the result of selecting them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class UTXO:
    """Unspent transaction output available for funding."""
    txid: str
    vout: int
    value: int
    script_pubkey: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UTXO':
        """
        Build a UTXO from a wallet or explorer record.

        Accepts both ``script_pubkey`` and ``scriptPubKey`` keys.
        """
        script = data.get('script_pubkey', data.get('scriptPubKey'))
        if script is None:
            raise KeyError("UTXO record is missing script_pubkey")
        return cls(
            txid=data['txid'],
            vout=int(data['vout']),
            value=int(data['value']),
            script_pubkey=script,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txid': self.txid,
            'vout': self.vout,
            'value': self.value,
            'script_pubkey': self.script_pubkey,
        }


@dataclass
class UTXOSelectionResult:
    """Outcome of UTXO selection for a target amount."""
    selected_utxos: List[UTXO] = field(default_factory=list)
    total_value: int = 0
    fee: int = 0
    change_amount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'selected_utxos': [utxo.to_dict() for utxo in self.selected_utxos],
            'total_value': self.total_value,
            'fee': self.fee,
            'change_amount': self.change_amount,
        }
