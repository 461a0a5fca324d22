"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor for every service that writes to the
    document store.  Services receive a ``DocumentStore`` from the caller;
    they never construct or close one.

Architecture position:
    Kernel > Services -- imperative shell.  Every service in
    ``toolcrib_kernel/services/`` that performs writes extends this class.

Invariants enforced:
    - Atomic multi-document changes go through ``store.run_transaction``.
      Non-transactional ``store.set`` is reserved for best-effort writes.
"""

from abc import ABC

from toolcrib_kernel.store.base import DocumentStore


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage the store lifecycle.
        - Does NOT provide query-only (read) methods -- those belong
          in ``toolcrib_kernel/selectors/``.
    """

    def __init__(self, store: DocumentStore):
        """
        Args:
            store: Document store for reads and writes.
        """
        self.store = store
