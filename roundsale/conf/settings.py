from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SaleSettings(BaseModel):
    """Network-wide constants used by the sale blueprints.

    Amounts are integers in the smallest unit; with DECIMAL_PLACES=2, `1_00` is one
    whole unit of the settlement asset or of the token.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    NETWORK_NAME: str

    # Native asset buyers pay with.
    SETTLEMENT_TOKEN_UID: bytes = b'\x00'

    DECIMAL_PLACES: int = Field(default=2, ge=0, le=18)

    # Version byte of P2PKH addresses.
    P2PKH_VERSION_BYTE: bytes = b'\x49'

    # Round exchange rate bounds, in token units per settlement unit.
    MIN_RATE: int = Field(default=1, gt=0)
    MAX_RATE: int = Field(default=1_000_000, gt=0)

    # Policy bounds for the per-investor cap and the soft cap.
    MIN_INDIVIDUAL_CAP: int = Field(default=1_00, gt=0)
    MAX_INDIVIDUAL_CAP: int = Field(default=10_000_000_00, gt=0)
    MIN_SOFT_CAP: int = Field(default=1_00, gt=0)

    # Initial per-transaction deposit ceilings of a ledger.
    DEFAULT_MAX_SETTLEMENT_DEPOSIT: int = Field(default=1_000_000_00, gt=0)
    DEFAULT_MAX_TOKEN_DEPOSIT: int = Field(default=1_000_000_000_00, gt=0)

    # Default supply cap of a sale token.
    TOKEN_MAX_SUPPLY: int = Field(default=1_000_000_000_00, gt=0)

    @field_validator('SETTLEMENT_TOKEN_UID', 'P2PKH_VERSION_BYTE')
    @classmethod
    def _single_byte(cls, value: bytes) -> bytes:
        if len(value) != 1:
            raise ValueError('must be exactly one byte')
        return value

    @model_validator(mode='after')
    def _check_bounds(self) -> SaleSettings:
        if self.MIN_RATE > self.MAX_RATE:
            raise ValueError('MIN_RATE must not exceed MAX_RATE')
        if self.MIN_INDIVIDUAL_CAP > self.MAX_INDIVIDUAL_CAP:
            raise ValueError('MIN_INDIVIDUAL_CAP must not exceed MAX_INDIVIDUAL_CAP')
        return self
