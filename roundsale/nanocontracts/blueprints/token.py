from typing import NamedTuple

from hathorlib.nanocontracts import Blueprint, Context, NCFail
from hathorlib.nanocontracts.types import (
    Address,
    Amount,
    CallerId,
    export,
    public,
    view,
)

from roundsale.conf import settings
from roundsale.nanocontracts.events import encode_event

NULL_ADDRESS = Address(b"\x00" * 25)


class TokenInfo(NamedTuple):
    """General token information."""

    name: str
    symbol: str
    decimals: int
    total_supply: int
    max_supply: int
    paused: bool
    owner: str


class Unauthorized(NCFail):
    pass


class ZeroAddress(NCFail):
    pass


class InvalidAmount(NCFail):
    pass


class ExceedsMaxSupply(NCFail):
    pass


class InsufficientBalance(NCFail):
    pass


class InsufficientAllowance(NCFail):
    pass


class EnforcedPause(NCFail):
    pass


@export
class Token(Blueprint):
    """Fixed-cap fungible token.

    Supply starts at zero and only the owner mints, never past `max_supply`. Holders
    can be wallets or contracts. While paused no balance moves at all.
    """

    name: str
    symbol: str
    decimals: int
    max_supply: Amount
    total_supply: Amount
    paused: bool
    owner: CallerId

    balances: dict[CallerId, Amount]
    allowances: dict[tuple[CallerId, CallerId], Amount]

    @public
    def initialize(
        self, ctx: Context, name: str, symbol: str, max_supply: Amount
    ) -> None:
        if not name or not symbol:
            raise NCFail("Name and symbol are required")
        if max_supply <= 0:
            raise InvalidAmount("Max supply must be positive")

        self.name = name
        self.symbol = symbol
        self.decimals = settings.DECIMAL_PLACES
        self.max_supply = Amount(max_supply)
        self.total_supply = Amount(0)
        self.paused = False
        self.owner = ctx.caller_id
        self.balances = {}
        self.allowances = {}

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner:
            raise Unauthorized("Only owner")

    def _when_not_paused(self) -> None:
        if self.paused:
            raise EnforcedPause("Token is paused")

    def _move(self, src: CallerId, dst: CallerId, amount: Amount) -> None:
        if dst == NULL_ADDRESS:
            raise ZeroAddress("Transfer to the null address")
        if amount <= 0:
            raise InvalidAmount("Amount must be positive")
        balance = self.balances.get(src, Amount(0))
        if balance < amount:
            raise InsufficientBalance(
                f"Insufficient balance. Available {balance}, requested {amount}"
            )
        self.balances[src] = Amount(balance - amount)
        self.balances[dst] = Amount(self.balances.get(dst, Amount(0)) + amount)

    @public
    def mint(self, ctx: Context, to: CallerId, amount: Amount) -> None:
        """Mint new tokens to `to` (owner only)."""
        self._only_owner(ctx)
        self._when_not_paused()
        if to == NULL_ADDRESS:
            raise ZeroAddress("Mint to the null address")
        if amount <= 0:
            raise InvalidAmount("Amount must be positive")
        if self.total_supply + amount > self.max_supply:
            raise ExceedsMaxSupply(
                f"Exceeds max supply. Remaining {self.max_supply - self.total_supply}"
            )

        self.total_supply = Amount(self.total_supply + amount)
        self.balances[to] = Amount(self.balances.get(to, Amount(0)) + amount)
        self.syscall.emit_event(encode_event("TokensMinted", to=to, amount=amount))

    @public
    def burn(self, ctx: Context, amount: Amount) -> None:
        """Burn tokens from the caller's own balance."""
        self._when_not_paused()
        if amount <= 0:
            raise InvalidAmount("Amount must be positive")
        balance = self.balances.get(ctx.caller_id, Amount(0))
        if balance < amount:
            raise InsufficientBalance(
                f"Insufficient balance. Available {balance}, requested {amount}"
            )

        self.balances[ctx.caller_id] = Amount(balance - amount)
        self.total_supply = Amount(self.total_supply - amount)
        self.syscall.emit_event(
            encode_event("TokensBurned", account=ctx.caller_id, amount=amount)
        )

    @public
    def transfer(self, ctx: Context, to: CallerId, amount: Amount) -> None:
        self._when_not_paused()
        self._move(ctx.caller_id, to, amount)
        self.syscall.emit_event(
            encode_event("Transfer", src=ctx.caller_id, dst=to, amount=amount)
        )

    @public
    def approve(self, ctx: Context, spender: CallerId, amount: Amount) -> None:
        """Allow `spender` to move up to `amount` of the caller's tokens."""
        if spender == NULL_ADDRESS:
            raise ZeroAddress("Approve to the null address")
        if amount < 0:
            raise InvalidAmount("Amount must not be negative")
        self.allowances[(ctx.caller_id, spender)] = Amount(amount)
        self.syscall.emit_event(
            encode_event("Approval", owner=ctx.caller_id, spender=spender, amount=amount)
        )

    @public
    def transfer_from(
        self, ctx: Context, src: CallerId, to: CallerId, amount: Amount
    ) -> None:
        """Move `amount` from `src` to `to` using the caller's allowance."""
        self._when_not_paused()
        key = (src, ctx.caller_id)
        allowance = self.allowances.get(key, Amount(0))
        if allowance < amount:
            raise InsufficientAllowance(
                f"Insufficient allowance. Allowed {allowance}, requested {amount}"
            )
        self._move(src, to, amount)
        self.allowances[key] = Amount(allowance - amount)
        self.syscall.emit_event(encode_event("Transfer", src=src, dst=to, amount=amount))

    @public
    def pause(self, ctx: Context) -> None:
        self._only_owner(ctx)
        if self.paused:
            raise NCFail("Already paused")
        self.paused = True
        self.syscall.emit_event(encode_event("Paused", account=ctx.caller_id))

    @public
    def unpause(self, ctx: Context) -> None:
        self._only_owner(ctx)
        if not self.paused:
            raise NCFail("Not paused")
        self.paused = False
        self.syscall.emit_event(encode_event("Unpaused", account=ctx.caller_id))

    @public
    def transfer_ownership(self, ctx: Context, new_owner: CallerId) -> None:
        self._only_owner(ctx)
        if new_owner == NULL_ADDRESS:
            raise ZeroAddress("New owner is the null address")
        previous = self.owner
        self.owner = new_owner
        self.syscall.emit_event(
            encode_event("OwnershipTransferred", previous_owner=previous, new_owner=new_owner)
        )

    @view
    def balance_of(self, account: CallerId) -> Amount:
        return self.balances.get(account, Amount(0))

    @view
    def allowance(self, owner: CallerId, spender: CallerId) -> Amount:
        return self.allowances.get((owner, spender), Amount(0))

    @view
    def get_token_info(self) -> TokenInfo:
        return TokenInfo(
            name=self.name,
            symbol=self.symbol,
            decimals=self.decimals,
            total_supply=self.total_supply,
            max_supply=self.max_supply,
            paused=self.paused,
            owner=self.owner.hex(),
        )
