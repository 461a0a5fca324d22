"""
toolcrib_services -- Package init and public API.

Responsibility:
    Composition layer: builds the store from config and wires kernel
    services, selectors, caches and the batch coordinator.

Architecture position:
    toolcrib_services/ -> toolcrib_batch/, toolcrib_config/, toolcrib_kernel/
    (allowed).  No lower package imports from here.
"""

from toolcrib_services.custody_api import CustodyAPI, build_store

__all__ = ["CustodyAPI", "build_store"]
