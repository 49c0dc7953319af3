"""
Solana wallet helpers for sign-in.

Address validation, challenge message construction, ed25519 signature
verification and mobile deep links for Phantom and Solflare.
"""

import logging
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import quote

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

PHANTOM_BROWSE_URL = "https://phantom.app/ul/browse/"
SOLFLARE_BROWSE_URL = "https://solflare.com/ul/v1/browse/"


class WalletAuthError(Exception):
    """Raised when a wallet signature or address cannot be verified."""

    pass


def _b58decode(value: str) -> Optional[bytes]:
    try:
        return base58.b58decode(value)
    except ValueError:
        return None


def is_valid_solana_address(address: str) -> bool:
    """
    Validate a base58-encoded Solana public key.

    Args:
        address: Wallet address as returned by ``connect()``

    Returns:
        True if it decodes to exactly 32 bytes
    """
    if not address or not isinstance(address, str):
        return False
    if not 32 <= len(address) <= 44:
        return False
    decoded = _b58decode(address)
    return decoded is not None and len(decoded) == PUBLIC_KEY_LENGTH


def abbreviate_address(address: str) -> str:
    """Default username for a new wallet profile, e.g. ``7xKX...9fQa``."""
    if len(address) <= 8:
        return address
    return f"{address[:4]}...{address[-4:]}"


def build_sign_in_message(address: str, nonce: str, issued_at: datetime, domain: str, app_name: str = "Sim") -> str:
    """
    Build the challenge text the wallet is asked to sign.

    Args:
        address: Wallet address signing in
        nonce: Single-use random nonce
        issued_at: Challenge creation time (UTC)
        domain: Host the user is signing in to

    Returns:
        Multi-line message passed to ``signMessage()``
    """
    return (
        f"{domain} wants you to sign in with your Solana account:\n"
        f"{address}\n"
        f"\n"
        f"Sign in to {app_name}. This request will not trigger a blockchain transaction or cost any fees.\n"
        f"\n"
        f"Nonce: {nonce}\n"
        f"Issued At: {issued_at.replace(microsecond=0).isoformat()}Z"
    )


def verify_wallet_signature(address: str, message: str, signature: str) -> bool:
    """
    Verify a detached ed25519 signature produced by ``signMessage()``.

    Args:
        address: Base58 public key
        message: Exact UTF-8 message that was signed
        signature: Base58 encoded 64-byte signature

    Returns:
        True if the signature is valid for the message and key

    Raises:
        WalletAuthError: If the key or signature is malformed
    """
    public_key_bytes = _b58decode(address)
    if public_key_bytes is None or len(public_key_bytes) != PUBLIC_KEY_LENGTH:
        raise WalletAuthError("Invalid public key")

    signature_bytes = _b58decode(signature)
    if signature_bytes is None or len(signature_bytes) != SIGNATURE_LENGTH:
        raise WalletAuthError("Invalid signature encoding")

    try:
        public_key = Ed25519PublicKey.from_public_bytes(public_key_bytes)
    except ValueError as exc:
        raise WalletAuthError("Invalid public key") from exc

    try:
        public_key.verify(signature_bytes, message.encode("utf-8"))
        return True
    except InvalidSignature:
        logger.debug(f"Signature mismatch for wallet {address[:8]}...")
        return False


def build_wallet_deep_links(url: str, ref: str) -> Dict[str, str]:
    """
    Deep links that open ``url`` inside the wallet's in-app browser.

    Used on mobile browsers where no ``window.solana`` provider is injected.
    """
    target = quote(url, safe="")
    referrer = quote(ref, safe="")
    return {
        "phantom": f"{PHANTOM_BROWSE_URL}{target}?ref={referrer}",
        "solflare": f"{SOLFLARE_BROWSE_URL}{target}?ref={referrer}",
    }
