from .borrow import BorrowEngine, CollateralItem, LendingSettings
from .coordinator import DistributionCoordinator, LocalRunGuard, RedisRunGuard, RunSummary, build_run_guard
from .rent_distribution import RentDistributionEngine
from .vault import VaultService

__all__ = [
    "BorrowEngine",
    "CollateralItem",
    "LendingSettings",
    "RentDistributionEngine",
    "DistributionCoordinator",
    "LocalRunGuard",
    "RedisRunGuard",
    "RunSummary",
    "build_run_guard",
    "VaultService",
]
