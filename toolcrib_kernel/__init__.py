"""
ToolCrib Kernel

Custody engine for workshop tools and consumables:
- Atomic checkout/checkin with instant-status fields
- Best-effort, time-partitioned history ledgers (per item and global)
- Consumable usage and restock with quantity tracking
- Pluggable document store (in-memory, SQL)
"""

__version__ = "0.1.0"
