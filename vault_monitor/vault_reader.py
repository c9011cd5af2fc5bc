"""
Vault Reads.
Composite contract reads for a single vault, built on the chain client's
`call` operation.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from .api.models import DepositInfo, VaultRecord
from .exceptions import VaultMonitorError
from .status import compute_deposit_info

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


async def read_vault_attributes(chain, address: str) -> Dict[str, Any]:
    """
    Read the static and current attributes of a vault.

    Args:
        chain: Chain reader
        address: Vault address

    Returns:
        Dict with name, symbol, totalSupplyCap, totalSupply, maturity, marketAddress

    Raises:
        TransientChainError, ClientError: If any read fails
    """
    name, symbol, cap, supply, maturity, market = await asyncio.gather(
        chain.call("amm", address, "name"),
        chain.call("amm", address, "symbol"),
        chain.call("amm", address, "totalSupplyCap"),
        chain.call("amm", address, "totalSupply"),
        chain.call("amm", address, "MATURITY"),
        chain.call("amm", address, "MARKET"),
    )
    return {
        "name": name,
        "symbol": symbol,
        "totalSupplyCap": int(cap),
        "totalSupply": int(supply),
        "maturity": int(maturity),
        "marketAddress": str(market),
    }


async def read_capacity(chain, address: str) -> Tuple[int, int]:
    """Current (cap, supply) of a vault."""
    cap, supply = await asyncio.gather(
        chain.call("amm", address, "totalSupplyCap"),
        chain.call("amm", address, "totalSupply"),
    )
    return int(cap), int(supply)


async def read_latest_time(chain, market_address: str) -> int:
    """Current time-index reported by the vault's market."""
    return int(await chain.call("market", market_address, "getLatestFTime"))


async def read_deposit_token(chain, hub_address: str, market_address: str) -> Optional[Tuple[str, int]]:
    """
    Resolve the deposit token of a market: descriptor -> token id -> token address -> ERC-20 metadata.

    Returns:
        (symbol, decimals), or None when the market has no token configured
    """
    descriptor = await chain.call("market", market_address, "descriptor")
    token_id = int(descriptor[1])
    if token_id == 0:
        logger.warning(f"Token id is zero for market {market_address}")
        return None

    token_address = str(await chain.call("hub", hub_address, "tokenIdToAddress", token_id))
    if token_address.lower() == ZERO_ADDRESS:
        logger.warning(f"Token address is zero for token id {token_id} in market {market_address}")
        return None

    symbol, decimals = await asyncio.gather(
        chain.call("erc20", token_address, "symbol"),
        chain.call("erc20", token_address, "decimals"),
    )
    return str(symbol), int(decimals)


async def read_self_acc(chain, address: str) -> str:
    """The vault's own market account id, as a 0x-prefixed hex string."""
    value = await chain.call("amm", address, "SELF_ACC")
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


async def read_amm_cash(chain, hub_address: str, self_acc: str) -> int:
    """Cash balance (18 decimals) of a vault's account on the market hub."""
    acc = bytes.fromhex(self_acc[2:] if self_acc.startswith("0x") else self_acc)
    return int(await chain.call("hub", hub_address, "accCash", acc))


async def read_missing_enrichment(chain, hub_address: str, record: VaultRecord) -> Dict[str, Any]:
    """
    Best-effort read of the optional metadata a record is still missing.

    Fields that are already populated are never re-read, so the result can be
    merged with `only_missing=True` without overwriting anything.

    Returns:
        Dict of newly resolved fields (possibly empty)
    """
    fields: Dict[str, Any] = {}

    if record.depositTokenSymbol is None or record.depositTokenDecimals is None:
        try:
            token = await read_deposit_token(chain, hub_address, record.marketAddress)
        except VaultMonitorError as e:
            logger.warning(f"Could not fetch deposit token for {record.address}: {e}")
            token = None
        if token:
            fields["depositTokenSymbol"], fields["depositTokenDecimals"] = token

    if record.selfAcc is None:
        try:
            fields["selfAcc"] = await read_self_acc(chain, record.address)
        except VaultMonitorError as e:
            logger.warning(f"Could not fetch account id for {record.address}: {e}")

    if fields:
        logger.debug(f"Resolved metadata for {record.address}: {sorted(fields)}")
    return fields


async def read_deposit_info(
    chain,
    hub_address: str,
    record: VaultRecord,
) -> Optional[DepositInfo]:
    """
    Best-effort deposit capacity for a vault, using the record's cap and supply.

    Returns:
        DepositInfo, or None if the account id is unknown or the read fails
    """
    if not record.selfAcc:
        return None
    try:
        cash = await read_amm_cash(chain, hub_address, record.selfAcc)
    except (VaultMonitorError, ValueError) as e:
        logger.warning(f"Could not calculate deposit info for {record.address}: {e}")
        return None
    return compute_deposit_info(record.lastKnownTotalSupply, record.totalSupplyCap, cash)
