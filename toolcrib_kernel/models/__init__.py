"""ORM models for the SQL document store."""

from toolcrib_kernel.models.document import DocumentRecord

__all__ = ["DocumentRecord"]
