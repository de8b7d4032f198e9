import logging
from typing import Dict, List

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import TransactionSignError

logger = logging.getLogger(__name__)


class KeypairSigner:
    """
    Signs compiled messages with in-memory keypairs.

    The fee payer comes first; any additional keypairs cover other signer
    accounts referenced by the instructions.
    """

    def __init__(self, fee_payer: Keypair, *additional_signers: Keypair):
        self._fee_payer = fee_payer.pubkey()
        self._keypairs: Dict[Pubkey, Keypair] = {}
        for keypair in (fee_payer, *additional_signers):
            self._keypairs.setdefault(keypair.pubkey(), keypair)

    @property
    def fee_payer(self) -> Pubkey:
        return self._fee_payer

    @property
    def pubkeys(self) -> List[Pubkey]:
        return list(self._keypairs)

    async def sign_message(self, message: MessageV0) -> List[Signature]:
        required = list(message.account_keys[:message.header.num_required_signatures])

        missing = [key for key in required if key not in self._keypairs]
        if missing:
            raise TransactionSignError(
                "Missing keypair for required signer(s)",
                context={"missing": ", ".join(str(key) for key in missing)},
            )

        try:
            tx = VersionedTransaction(message, [self._keypairs[key] for key in required])
        except Exception as e:
            raise TransactionSignError(f"Failed to sign versioned transaction: {e}") from e

        return list(tx.signatures)


__all__ = ["KeypairSigner"]
