"""
Vault Transaction Builder - Collaborator Contracts

Abstract interfaces for the two external collaborators: the script engine
that generates vault scripts and templates, and the Bitcoin wallet that
holds the depositor key.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PeginTransaction:
    """Unfunded peg-in transaction produced by the script engine."""
    tx_hex: str
    txid: str
    vault_script_pubkey: str
    vault_value: int


@dataclass
class PayoutScript:
    """Payout leaf script and the Taproot internal key it commits under."""
    payout_script: str
    internal_key: str


class ScriptEngine(ABC):
    """
    Generates vault scripts and templates.

    Both operations may suspend; callers await each exactly once.
    """

    @abstractmethod
    async def create_pegin_transaction(
        self,
        depositor: str,
        vault_provider: str,
        vault_keepers: List[str],
        universal_challengers: List[str],
        pegin_amount: int,
        network: str
    ) -> PeginTransaction:
        """Return the unfunded peg-in transaction (0 inputs) for the given signers."""

    @abstractmethod
    async def create_payout_script(
        self,
        depositor: str,
        vault_provider: str,
        vault_keepers: List[str],
        universal_challengers: List[str],
        network: str
    ) -> PayoutScript:
        """Return the payout leaf script and internal key for the given signers."""


@dataclass
class SignInputOptions:
    """Restricts wallet signing to one input."""
    index: int
    public_key: Optional[str] = None
    # Script-path spends sign with the untweaked key
    disable_tweak_signer: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'publicKey': self.public_key,
            'disableTweakSigner': self.disable_tweak_signer,
        }


@dataclass
class SignPsbtOptions:
    auto_finalized: bool = True
    sign_inputs: List[SignInputOptions] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'autoFinalized': self.auto_finalized,
            'signInputs': [sign_input.to_dict() for sign_input in self.sign_inputs],
        }


class BitcoinWallet(ABC):
    """
    Signing contract of a Bitcoin wallet.

    Wallets able to sign several PSBTs in one interaction additionally
    implement ``sign_psbts(psbt_hexes, options)``.
    """

    @abstractmethod
    async def get_public_key_hex(self) -> str:
        """Return the wallet public key (x-only, compressed or uncompressed hex)."""

    @abstractmethod
    async def sign_psbt(self, psbt_hex: str, options: Optional[SignPsbtOptions] = None) -> str:
        """Sign a PSBT and return the signed PSBT hex."""
