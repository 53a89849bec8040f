# =============================================================================
# KVM Client -- Error Types
# =============================================================================


class KVMError(Exception):
    """Base exception for all KVM client errors."""


class KVMConnectionError(KVMError):
    """Session lifecycle misuse (sending on a stopped session, restarting)."""


class KVMProtocolError(KVMError):
    """Wire protocol errors (unknown message objects, malformed payloads)."""


class KVMTimeoutError(KVMError):
    """Operation timed out."""
