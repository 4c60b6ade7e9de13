"""Custodial payout wallet."""

import logging
from typing import Optional

from bip_utils import Bip39SeedGenerator, Bip44, Bip44Changes, Bip44Coins
from eth_account import Account
from eth_account.signers.local import LocalAccount

from swapback.config import Settings, get_settings

logger = logging.getLogger(__name__)


def derive_private_key(seed_phrase: str, index: int = 0) -> str:
    """Derive the Ethereum private key at m/44'/60'/0'/0/index."""
    seed_bytes = Bip39SeedGenerator(seed_phrase).Generate()
    bip44 = Bip44.FromSeed(seed_bytes, Bip44Coins.ETHEREUM)
    account = (
        bip44.Purpose().Coin().Account(0).Change(Bip44Changes.CHAIN_EXT).AddressIndex(index)
    )
    return account.PrivateKey().Raw().ToHex()


def load_payout_account(settings: Optional[Settings] = None) -> LocalAccount:
    """Load the single signing identity used for every payout.

    PAYOUT_PRIVATE_KEY wins over WALLET_SEED_PHRASE.

    Raises:
        ValueError: No key material is configured
    """
    settings = settings or get_settings()

    if settings.payout_private_key:
        account = Account.from_key(settings.payout_private_key)
    elif settings.wallet_seed_phrase:
        account = Account.from_key(derive_private_key(settings.wallet_seed_phrase))
    else:
        raise ValueError("No payout wallet configured (set PAYOUT_PRIVATE_KEY or WALLET_SEED_PHRASE)")

    logger.info(f"Payout wallet: {account.address}")
    return account
