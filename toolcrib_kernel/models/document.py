"""
Module: toolcrib_kernel.models.document
Responsibility: ORM persistence for one JSON document of the SQL document
    store.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``path`` is unique: one row per document address.
    - ``version`` increases by exactly one on every committed write; the
      store's compare-and-set is ``UPDATE ... WHERE path = :p AND
      version = :seen``.

Failure modes:
    - IntegrityError when two writers insert the same new path; the store
      treats it as a version conflict.
"""

from typing import Any

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from toolcrib_kernel.db.base import TrackedBase


class DocumentRecord(TrackedBase):
    """One stored document.  ``data`` holds the JSON-encoded body."""

    __tablename__ = "documents"

    __table_args__ = (
        Index("idx_documents_collection", "collection"),
    )

    path: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    collection: Mapped[str] = mapped_column(String(256), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(256), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<DocumentRecord {self.path} v{self.version}>"
