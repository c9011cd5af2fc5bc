"""
Pydantic models for vault records, persisted state and lifecycle transitions.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from ..status import is_filled


class VaultRecord(BaseModel):
    """Last known state of one vault contract."""
    address: str
    name: str = ""
    symbol: str = ""
    totalSupplyCap: int = Field(0, ge=0)
    lastKnownTotalSupply: int = Field(0, ge=0)
    isFilled: bool = False
    maturity: int = Field(0, ge=0)
    marketAddress: str = ""
    lastCheckedBlock: int = 0
    createdAt: int = 0
    # Optional enrichment, filled in once known and never overwritten
    depositTokenSymbol: Optional[str] = None
    depositTokenDecimals: Optional[int] = None
    selfAcc: Optional[str] = None

    @field_validator("totalSupplyCap", "lastKnownTotalSupply", "maturity", mode="before")
    @classmethod
    def parse_big_int(cls, v: Any) -> Any:
        """Accept the decimal-string form used in the state file."""
        if isinstance(v, str):
            return int(v.strip())
        return v

    @field_serializer("totalSupplyCap", "lastKnownTotalSupply", "maturity", when_used="json")
    def serialize_big_int(self, v: int) -> str:
        return str(v)

    @property
    def key(self) -> str:
        return self.address.lower()

    def with_capacity(self, cap: int, supply: int, threshold_percent: float, **updates) -> "VaultRecord":
        """
        Copy of this record with new cap/supply and the Filled flag recomputed from them.

        Args:
            cap: Total supply cap
            supply: Current total supply
            threshold_percent: Fill threshold in percent
            **updates: Other fields to replace

        Returns:
            New VaultRecord
        """
        fields = dict(updates)
        fields.update(
            totalSupplyCap=cap,
            lastKnownTotalSupply=supply,
            isFilled=is_filled(supply, cap, threshold_percent),
        )
        return self.model_copy(update=fields)


class MonitorState(BaseModel):
    """Aggregate snapshot persisted by the state manager."""
    lastProcessedBlock: int = Field(0, ge=0)
    vaults: Dict[str, VaultRecord] = Field(default_factory=dict)

    @field_validator("vaults")
    @classmethod
    def normalize_keys(cls, v: Dict[str, VaultRecord]) -> Dict[str, VaultRecord]:
        return {key.lower(): record for key, record in v.items()}


class ChainEvent(BaseModel):
    """Decoded event log entry."""
    blockNumber: int
    transactionHash: str = ""
    logIndex: int = 0
    args: Dict[str, Any] = Field(default_factory=dict)


class TransitionKind(str, Enum):
    VAULT_CREATED = "vault-created"
    CAP_RAISED = "cap-raised"
    VAULT_FILLED = "vault-filled"
    VAULT_AVAILABLE = "vault-available"


class DepositInfo(BaseModel):
    """How much can still be deposited into a vault, in deposit-token units."""
    lpPrice: Decimal
    availableLpCapacity: Decimal
    availableDeposit: Decimal


class Transition(BaseModel):
    """
    A detected lifecycle transition, tagged by kind.

    Only the fields relevant to the kind are set:
    vault-created carries `filled`, cap-raised carries `oldCap`, `newCap` and
    `currentSupply`, vault-available carries `currentSupply`.
    """
    kind: TransitionKind
    vault: VaultRecord
    filled: Optional[bool] = None
    oldCap: Optional[int] = None
    newCap: Optional[int] = None
    currentSupply: Optional[int] = None
    depositInfo: Optional[DepositInfo] = None
    blockNumber: Optional[int] = None

    @classmethod
    def vault_created(
        cls,
        vault: VaultRecord,
        filled: bool,
        deposit_info: Optional[DepositInfo] = None,
        block_number: Optional[int] = None,
    ) -> "Transition":
        return cls(
            kind=TransitionKind.VAULT_CREATED,
            vault=vault,
            filled=filled,
            depositInfo=deposit_info,
            blockNumber=block_number,
        )

    @classmethod
    def cap_raised(
        cls,
        vault: VaultRecord,
        old_cap: int,
        new_cap: int,
        current_supply: int,
        deposit_info: Optional[DepositInfo] = None,
        block_number: Optional[int] = None,
    ) -> "Transition":
        return cls(
            kind=TransitionKind.CAP_RAISED,
            vault=vault,
            oldCap=old_cap,
            newCap=new_cap,
            currentSupply=current_supply,
            depositInfo=deposit_info,
            blockNumber=block_number,
        )

    @classmethod
    def vault_filled(cls, vault: VaultRecord, block_number: Optional[int] = None) -> "Transition":
        return cls(kind=TransitionKind.VAULT_FILLED, vault=vault, blockNumber=block_number)

    @classmethod
    def vault_available(
        cls,
        vault: VaultRecord,
        current_supply: int,
        deposit_info: Optional[DepositInfo] = None,
        block_number: Optional[int] = None,
    ) -> "Transition":
        return cls(
            kind=TransitionKind.VAULT_AVAILABLE,
            vault=vault,
            currentSupply=current_supply,
            depositInfo=deposit_info,
            blockNumber=block_number,
        )


class LiveVault(BaseModel):
    """Row of the live-vault listing."""
    vault: VaultRecord
    utilization: float
    depositCurrency: str
