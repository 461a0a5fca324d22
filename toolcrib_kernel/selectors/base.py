"""
Module: toolcrib_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors form the "Q" side of the custody kernel, providing structured
    read access to items, staff and history without mutation capability.
Architecture position: Kernel > Selectors.  May import from store/, domain/
    and exceptions.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call ``store.set`` or
      ``store.run_transaction``.
    - DTO return convention: selectors return frozen dataclasses, never
      raw document dicts.
"""

from abc import ABC

from toolcrib_kernel.store.base import DocumentStore


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Guarantees:
        - ``store`` is stored as a public attribute for subclass queries.
        - No write operations are performed.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
