"""Work-cache refill and result reconciliation for GPU worker directories.

Every file touched here is shared with the computation program (mfakto,
clLucas) and possibly with other manager processes, so each operation runs
inside a marker-file lock taken through :class:`LockManager`.
"""

from primenet_manager.sync.locks import LockManager, LockUnavailableError
from primenet_manager.sync.models import FailureClass, StepResult
from primenet_manager.sync.reconciler import ResultReconciler, classify_results
from primenet_manager.sync.submitter import BatchSubmitter, split_batches
from primenet_manager.sync.work_cache import WorkCache
from primenet_manager.sync.worker import UpdateAbortedError, UpdateOrchestrator

__all__ = [
    "BatchSubmitter",
    "FailureClass",
    "LockManager",
    "LockUnavailableError",
    "ResultReconciler",
    "StepResult",
    "UpdateAbortedError",
    "UpdateOrchestrator",
    "WorkCache",
    "classify_results",
    "split_batches",
]
