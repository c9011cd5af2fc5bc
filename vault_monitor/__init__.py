"""
Vault Monitor.
Watches an AMM vault factory for new vaults and capacity changes and reports them.
"""

__version__ = "0.1.0"
