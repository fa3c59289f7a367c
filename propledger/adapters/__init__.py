import logging

from .funds import DemoFundsProvider, FundsProvider, NullFundsProvider, StripeFundsProvider
from .mirror import (
    ChainMirror, DemoChainMirror, EvmChainMirror, NullChainMirror, call_best_effort,
)

logger = logging.getLogger(__name__)


def build_chain_mirror(config):
    if config.get("EVM_RPC_URL") and config.get("EVM_PRIVATE_KEY") and config.get("BORROW_VAULT_ADDRESS"):
        return EvmChainMirror(
            rpc_url=config["EVM_RPC_URL"],
            private_key=config["EVM_PRIVATE_KEY"],
            vault_address=config["BORROW_VAULT_ADDRESS"],
            chain_id=config["EVM_CHAIN_ID"],
        )
    if config.get("DEMO_MODE"):
        return DemoChainMirror()
    logger.info("No chain configured; on-chain mirroring disabled")
    return NullChainMirror()


def build_funds_provider(config):
    if config.get("STRIPE_SECRET_KEY"):
        return StripeFundsProvider(config["STRIPE_SECRET_KEY"])
    if config.get("DEMO_MODE"):
        return DemoFundsProvider()
    return NullFundsProvider()


__all__ = [
    "ChainMirror", "NullChainMirror", "DemoChainMirror", "EvmChainMirror", "call_best_effort",
    "FundsProvider", "NullFundsProvider", "DemoFundsProvider", "StripeFundsProvider",
    "build_chain_mirror", "build_funds_provider",
]
