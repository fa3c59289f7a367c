from propledger.extensions import db

# Supporting models (identity and listings are owned by other services)
from .user import User
from .property import Property

# Ledger models
from .vault import VaultAccount
from .holding import Holding
from .borrow import BorrowPosition, BorrowCollateral, BorrowRepayment
from .rent import RentPayment, RentDistribution, DistributionRun
from .transaction import Transaction

__all__ = [
    "db",
    "User",
    "Property",
    "VaultAccount",
    "Holding",
    "BorrowPosition",
    "BorrowCollateral",
    "BorrowRepayment",
    "RentPayment",
    "RentDistribution",
    "DistributionRun",
    "Transaction",
]
