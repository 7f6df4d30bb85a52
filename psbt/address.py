"""
Vault Transaction Builder - Address Decoding

Converts change and split destination addresses into output scripts for the
supported networks.
"""

from bitcoinlib.encoding import (
    EncodingError,
    addr_base58_to_pubkeyhash,
    addr_bech32_to_pubkeyhash,
)

from .exceptions import InputValidationError


# Bech32 human readable part per network name
NETWORK_HRP = {
    'mainnet': 'bc',
    'bitcoin': 'bc',
    'testnet': 'tb',
    'signet': 'tb',
    'regtest': 'bcrt',
}

# Leading base58 characters of P2PKH and P2SH addresses per bech32 prefix
BASE58_PREFIXES = {
    'bc': {'p2pkh': ('1',), 'p2sh': ('3',)},
    'tb': {'p2pkh': ('m', 'n'), 'p2sh': ('2',)},
    'bcrt': {'p2pkh': ('m', 'n'), 'p2sh': ('2',)},
}


def get_network(network: str) -> str:
    """
    Resolve a network name to its bech32 human readable part.

    Args:
        network: One of mainnet/bitcoin, testnet, signet, regtest

    Returns:
        Bech32 prefix ('bc', 'tb' or 'bcrt')

    Raises:
        InputValidationError: For unknown network names
    """
    hrp = NETWORK_HRP.get(network)
    if hrp is None:
        raise InputValidationError(f"Unknown network: {network}")
    return hrp


def address_to_script_pubkey(address: str, network: str) -> bytes:
    """
    Decode an address into its output script.

    Args:
        address: Bech32, bech32m or base58 address
        network: Network the address must belong to

    Returns:
        Output script bytes

    Raises:
        InputValidationError: If the address cannot be decoded for the network
    """
    hrp = get_network(network)

    if not address:
        raise InputValidationError("Failed to decode address: empty address")

    try:
        if address.lower().startswith(hrp + '1'):
            return addr_bech32_to_pubkeyhash(address, prefix=hrp, include_witver=True)

        prefixes = BASE58_PREFIXES[hrp]
        pubkey_hash = addr_base58_to_pubkeyhash(address)
        if address.startswith(prefixes['p2pkh']):
            # OP_DUP OP_HASH160 <hash> OP_EQUALVERIFY OP_CHECKSIG
            return b'\x76\xa9\x14' + pubkey_hash + b'\x88\xac'
        if address.startswith(prefixes['p2sh']):
            # OP_HASH160 <hash> OP_EQUAL
            return b'\xa9\x14' + pubkey_hash + b'\x87'
    except (EncodingError, AssertionError, ValueError, TypeError, IndexError, KeyError) as e:
        raise InputValidationError(f"Failed to decode address {address}: {e}")

    raise InputValidationError(
        f"Failed to decode address {address}: not a valid {network} address"
    )
