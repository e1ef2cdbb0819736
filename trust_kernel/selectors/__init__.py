"""Read-only query selectors."""

from trust_kernel.selectors.base import BaseSelector
from trust_kernel.selectors.trust_selector import TransactionHistory, TrustSelector

__all__ = ["BaseSelector", "TransactionHistory", "TrustSelector"]
