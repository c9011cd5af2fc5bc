"""
Exception types raised by the vault monitor.
"""


class VaultMonitorError(Exception):
    """Base class for all vault monitor errors."""


class TransientChainError(VaultMonitorError):
    """RPC or network failure. The next loop iteration re-covers the same range."""


class ClientError(VaultMonitorError):
    """A contract call or log query could not be resolved or decoded."""


class PersistenceError(VaultMonitorError):
    """The state snapshot could not be written to disk."""
