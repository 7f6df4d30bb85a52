"""
Vault Transaction Builder - Vault Module

Depositor-side orchestration: peg-in preparation and signing, payout
signature collection, and the contracts for the script engine and wallet.
"""

from .pubkeys import (
    process_public_key_to_x_only,
    validate_wallet_pubkey,
    WalletPubkeyValidation,
)
from .interfaces import (
    BitcoinWallet,
    ScriptEngine,
    PeginTransaction,
    PayoutScript,
    SignInputOptions,
    SignPsbtOptions,
)
from .pegin import PeginParams, PeginPsbtResult, build_pegin_psbt
from .pegin_manager import CreatePeginParams, PeginResult, PeginManager
from .payout_manager import (
    SignPayoutOptimisticParams,
    SignPayoutParams,
    PayoutSignatureResult,
    PayoutSignaturePair,
    PayoutBatchItem,
    PayoutManager,
)

__all__ = [
    'process_public_key_to_x_only',
    'validate_wallet_pubkey',
    'WalletPubkeyValidation',
    'BitcoinWallet',
    'ScriptEngine',
    'PeginTransaction',
    'PayoutScript',
    'SignInputOptions',
    'SignPsbtOptions',
    'PeginParams',
    'PeginPsbtResult',
    'build_pegin_psbt',
    'CreatePeginParams',
    'PeginResult',
    'PeginManager',
    'SignPayoutOptimisticParams',
    'SignPayoutParams',
    'PayoutSignatureResult',
    'PayoutSignaturePair',
    'PayoutBatchItem',
    'PayoutManager',
]
