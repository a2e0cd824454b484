"""0x ``EthSign`` signatures over transaction hashes."""

from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address, is_same_address, to_checksum_address

from .exceptions import SigningError

ETH_SIGN_SIGNATURE_TYPE = 0x03


def ec_sign_hash(private_key: str, tx_hash: str, signer_address: str) -> str:
    """Sign ``tx_hash`` the way 0x's ``ecSignHashAsync`` does.

    The hash is signed as an EIP-191 personal message, the signature is
    checked to recover to ``signer_address`` and is returned as
    ``0x || v || r || s || 03`` (the trailing byte is the EthSign type).
    """
    if not is_address(signer_address):
        raise SigningError(f"Invalid signer address: {signer_address}")
    try:
        message = encode_defunct(hexstr=tx_hash)
        signed = Account.sign_message(message, private_key=private_key)
    except (ValueError, TypeError) as e:
        raise SigningError(f"Cannot sign {tx_hash!r}: {e}") from e

    recovered = Account.recover_message(message, signature=signed.signature)
    if not is_same_address(recovered, signer_address):
        raise SigningError(
            f"Private key belongs to {recovered}, "
            f"not to signer {to_checksum_address(signer_address)}"
        )

    signature = (
        bytes([signed.v])
        + signed.r.to_bytes(32, "big")
        + signed.s.to_bytes(32, "big")
        + bytes([ETH_SIGN_SIGNATURE_TYPE])
    )
    return "0x" + signature.hex()
