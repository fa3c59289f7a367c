"""
On-chain mirror of the ledger.

The ledger is the source of truth. The chain is a best-effort, eventually
consistent copy: every call here happens after the ledger transaction has
committed, and a failure is logged and reported as ``None`` instead of being
raised back into the ledger operation.
"""
import logging
import secrets
import time
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from web3 import Web3

from ..errors import MirrorError

logger = logging.getLogger(__name__)

USDC_DECIMALS = 6

# Only the functions the ledger mirrors.
BORROW_VAULT_ABI = [
    {
        "name": "lockCollateral", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}, {"name": "tokenId", "type": "uint256"},
                   {"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "unlockCollateral", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}, {"name": "tokenId", "type": "uint256"},
                   {"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "issueLoan", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}, {"name": "amount", "type": "uint256"},
                   {"name": "interestRateBps", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "recordRepayment", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}, {"name": "principalPaid", "type": "uint256"},
                   {"name": "interestPaid", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "setTokenPrice", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "tokenId", "type": "uint256"}, {"name": "price", "type": "uint256"}],
        "outputs": [],
    },
]


@runtime_checkable
class ChainMirror(Protocol):
    @property
    def enabled(self) -> bool: ...

    def lock_collateral(self, wallet: str, token_id: int, amount: int) -> Optional[str]: ...

    def unlock_collateral(self, wallet: str, token_id: int, amount: int) -> Optional[str]: ...

    def issue_loan(self, wallet: str, amount: Decimal, rate_bps: int) -> Optional[str]: ...

    def record_repayment(self, wallet: str, principal_paid: Decimal, interest_paid: Decimal) -> Optional[str]: ...

    def set_asset_price(self, token_id: int, price: Decimal) -> Optional[str]: ...


class NullChainMirror:
    """Used when no chain is configured; the ledger runs alone."""

    enabled = False

    def lock_collateral(self, wallet, token_id, amount):
        return None

    def unlock_collateral(self, wallet, token_id, amount):
        return None

    def issue_loan(self, wallet, amount, rate_bps):
        return None

    def record_repayment(self, wallet, principal_paid, interest_paid):
        return None

    def set_asset_price(self, token_id, price):
        return None


class DemoChainMirror:
    """Returns mock transaction hashes so demo flows show mirror references."""

    enabled = True

    def _tx_hash(self):
        return f"0xdemo{int(time.time() * 1000):x}{secrets.token_hex(4)}".ljust(66, "0")

    def lock_collateral(self, wallet, token_id, amount):
        return self._tx_hash()

    def unlock_collateral(self, wallet, token_id, amount):
        return self._tx_hash()

    def issue_loan(self, wallet, amount, rate_bps):
        return self._tx_hash()

    def record_repayment(self, wallet, principal_paid, interest_paid):
        return self._tx_hash()

    def set_asset_price(self, token_id, price):
        return self._tx_hash()


def to_units(amount, decimals=USDC_DECIMALS):
    return int((Decimal(str(amount)) * (Decimal(10) ** decimals)).to_integral_value())


class EvmChainMirror:
    """Mirrors ledger events to the BorrowVault contract on an EVM chain."""

    enabled = True

    def __init__(self, rpc_url, private_key, vault_address, chain_id, timeout=120):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.account = self.w3.eth.account.from_key(private_key)
        self.chain_id = chain_id
        self.timeout = timeout
        self.vault = self.w3.eth.contract(
            address=Web3.to_checksum_address(vault_address), abi=BORROW_VAULT_ABI
        )
        logger.info("EVM mirror ready for vault %s (operator %s)", vault_address, self.account.address)

    def _send(self, fn):
        try:
            tx = fn.build_transaction({
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address),
                "chainId": self.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
            tx_hash = self.w3.eth.send_raw_transaction(raw)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)
        except Exception as e:
            raise MirrorError(str(e)) from e
        if receipt["status"] != 1:
            raise MirrorError(f"transaction {tx_hash.hex()} reverted")
        return receipt["transactionHash"].hex()

    def lock_collateral(self, wallet, token_id, amount):
        return self._send(self.vault.functions.lockCollateral(Web3.to_checksum_address(wallet), token_id, amount))

    def unlock_collateral(self, wallet, token_id, amount):
        return self._send(self.vault.functions.unlockCollateral(Web3.to_checksum_address(wallet), token_id, amount))

    def issue_loan(self, wallet, amount, rate_bps):
        return self._send(self.vault.functions.issueLoan(Web3.to_checksum_address(wallet), to_units(amount), rate_bps))

    def record_repayment(self, wallet, principal_paid, interest_paid):
        return self._send(self.vault.functions.recordRepayment(
            Web3.to_checksum_address(wallet), to_units(principal_paid), to_units(interest_paid)
        ))

    def set_asset_price(self, token_id, price):
        return self._send(self.vault.functions.setTokenPrice(token_id, to_units(price)))


def call_best_effort(operation, func, *args, ledger_ref=None):
    """Run one mirror/funds side effect; log and return None on any failure."""
    try:
        return func(*args)
    except Exception as e:
        logger.warning("%s failed (non-fatal, ledger ref %s): %s", operation, ledger_ref, e)
        return None
