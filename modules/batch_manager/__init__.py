"""
Batch Manager module.

Runs many generation jobs concurrently under per-provider and global caps.
"""

from modules.batch_manager.batch import BatchRun
from modules.batch_manager.cache import JobResultCache
from modules.batch_manager.ledger import ConcurrencyLedger
from modules.batch_manager.manager import BatchManager

__all__ = ["BatchManager", "BatchRun", "ConcurrencyLedger", "JobResultCache"]
