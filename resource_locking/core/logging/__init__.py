from resource_locking.core.logging.structured import (
    StructuredFormatter,
    setup_structured_logging,
)

__all__ = ["StructuredFormatter", "setup_structured_logging"]
