from typing import NamedTuple

from hathorlib.nanocontracts import Blueprint, Context, NCFail
from hathorlib.nanocontracts.types import (
    Address,
    Amount,
    CallerId,
    ContractId,
    NCArgs,
    NCDepositAction,
    NCWithdrawalAction,
    TokenUid,
    export,
    fallback,
    public,
    view,
)

from roundsale.conf import settings
from roundsale.nanocontracts.events import encode_event

SETTLEMENT_UID = TokenUid(settings.SETTLEMENT_TOKEN_UID)
NULL_ADDRESS = Address(b"\x00" * 25)

# Method called on contract recipients of the settlement asset. Recipients without
# it are reached through their fallback.
TRANSFER_HOOK = "on_ledger_transfer"


class AccountBalances(NamedTuple):
    """Lifetime counters of one account. They are never a spendable balance."""

    deposited_settlement: int
    deposited_token: int
    sent_settlement: int
    sent_token: int


class LedgerInfo(NamedTuple):
    """Ledger holdings and configuration."""

    owner: str
    token_id: str
    settlement_holdings: int
    token_holdings: int
    max_settlement_deposit: int
    max_token_deposit: int
    paused: bool


class ZeroAmount(NCFail):
    pass


class OverCeiling(NCFail):
    pass


class InsufficientFunds(NCFail):
    pass


class Unauthorized(NCFail):
    pass


class NullRecipient(NCFail):
    pass


class TransferFailed(NCFail):
    pass


class Paused(NCFail):
    pass


class InvalidAmount(NCFail):
    pass


class InvalidActions(NCFail):
    pass


@export
class Ledger(Blueprint):
    """Custodian of the settlement asset and of the sale token.

    The life cycle of contracts using this blueprint is the following:

    1. [Owner] Create the ledger bound to a token contract.
    2. [Owner] `set_authorized(...)` for every contract allowed to withdraw.
    3. [Anyone] `deposit_settlement()`, plain transfers, or `deposit_token(...)`.
    4. [Authorized] `withdraw_settlement(...)` and `withdraw_token(...)`.

    Deposited/sent counters only grow. What can be withdrawn is always read from the
    real holdings: the native balance of the contract and its balance in the token.
    Withdrawals record the outgoing amount before the funds leave.

    Settlement withdrawals to another contract are pushed to it with a deposit action.
    Any other withdrawal is pulled: the call must carry a withdrawal action of exactly
    the requested amount.
    """

    owner: CallerId
    token_id: ContractId
    paused: bool

    # Access control
    authorized: dict[CallerId, bool]

    # Per-transaction deposit ceilings
    max_settlement_deposit: Amount
    max_token_deposit: Amount

    # Lifetime counters per account
    deposited_settlement: dict[CallerId, Amount]
    deposited_token: dict[CallerId, Amount]
    sent_settlement: dict[CallerId, Amount]
    sent_token: dict[CallerId, Amount]

    @public
    def initialize(self, ctx: Context, token_id: ContractId) -> None:
        """Create the ledger for `token_id`; the caller becomes the owner."""
        self.owner = ctx.caller_id
        self.token_id = token_id
        self.paused = False
        self.authorized = {}
        self.max_settlement_deposit = Amount(settings.DEFAULT_MAX_SETTLEMENT_DEPOSIT)
        self.max_token_deposit = Amount(settings.DEFAULT_MAX_TOKEN_DEPOSIT)
        self.deposited_settlement = {}
        self.deposited_token = {}
        self.sent_settlement = {}
        self.sent_token = {}

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner:
            raise Unauthorized("Only owner")

    def _only_authorized(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner and not self.authorized.get(ctx.caller_id, False):
            raise Unauthorized("Caller is not authorized")

    def _when_not_paused(self) -> None:
        if self.paused:
            raise Paused("Ledger is paused")

    def _validate_withdrawal(self, to: CallerId, amount: Amount) -> None:
        if amount <= 0:
            raise ZeroAmount("Amount must be positive")
        if to == NULL_ADDRESS:
            raise NullRecipient("Recipient is the null address")

    def _token(self):
        return self.syscall.get_contract(self.token_id, blueprint_id=None)

    def _get_settlement_deposit(self, ctx: Context) -> Amount:
        """Amount of settlement asset attached to the call; other tokens are rejected."""
        for token_uid in ctx.actions:
            if token_uid != SETTLEMENT_UID:
                raise InvalidActions("Only the settlement asset can be deposited")
        actions = ctx.actions.get(SETTLEMENT_UID, ())
        if not actions:
            return Amount(0)
        if len(actions) != 1 or not isinstance(actions[0], NCDepositAction):
            raise InvalidActions("Expected a single deposit action")
        return Amount(actions[0].amount)

    def _credit_settlement(self, ctx: Context) -> None:
        self._when_not_paused()
        amount = self._get_settlement_deposit(ctx)
        if amount == 0:
            raise ZeroAmount("Amount must be positive")
        if amount > self.max_settlement_deposit:
            raise OverCeiling(
                f"Deposit above limit. Max {self.max_settlement_deposit}"
            )

        self.deposited_settlement[ctx.caller_id] = Amount(
            self.deposited_settlement.get(ctx.caller_id, Amount(0)) + amount
        )
        self.syscall.emit_event(
            encode_event("SettlementDeposited", account=ctx.caller_id, amount=amount)
        )

    @public(allow_deposit=True)
    def deposit_settlement(self, ctx: Context) -> None:
        """Deposit the settlement asset attached to the call."""
        self._credit_settlement(ctx)

    @fallback(allow_deposit=True)
    def fallback(self, ctx: Context, method_name: str, nc_args: NCArgs) -> None:
        """Plain transfers are deposits of the sender."""
        self._credit_settlement(ctx)

    def _pay_settlement(self, ctx: Context, to: CallerId, amount: Amount) -> None:
        if isinstance(to, ContractId) and to != ctx.caller_id:
            if ctx.actions:
                raise InvalidActions("Transfers to other contracts take no actions")
            recipient = self.syscall.get_contract(to, blueprint_id=None)
            try:
                recipient.get_public_method(
                    TRANSFER_HOOK,
                    NCDepositAction(token_uid=SETTLEMENT_UID, amount=amount),
                )()
            except NCFail as e:
                raise TransferFailed(f"Transfer to {to.hex()} failed") from e
            return

        actions = ctx.actions.get(SETTLEMENT_UID, ())
        if (
            len(ctx.actions) != 1
            or len(actions) != 1
            or not isinstance(actions[0], NCWithdrawalAction)
            or actions[0].amount != amount
        ):
            raise TransferFailed(f"Expected a withdrawal of exactly {amount}")

    @public(allow_withdrawal=True)
    def withdraw_settlement(self, ctx: Context, to: CallerId, amount: Amount) -> None:
        """Send `amount` of the settlement asset to `to` (authorized callers only)."""
        self._when_not_paused()
        self._only_authorized(ctx)
        self._validate_withdrawal(to, amount)

        holdings = self.syscall.get_balance_before_current_call(SETTLEMENT_UID)
        if holdings < amount:
            raise InsufficientFunds(
                f"Insufficient funds. Held {holdings}, requested {amount}"
            )

        self.sent_settlement[to] = Amount(
            self.sent_settlement.get(to, Amount(0)) + amount
        )
        self.syscall.emit_event(
            encode_event("SettlementWithdrawn", caller=ctx.caller_id, to=to, amount=amount)
        )
        self._pay_settlement(ctx, to, amount)

    @public
    def deposit_token(self, ctx: Context, amount: Amount) -> None:
        """Pull `amount` tokens from the caller; the caller must have approved the ledger."""
        self._when_not_paused()
        if amount <= 0:
            raise ZeroAmount("Amount must be positive")
        if amount > self.max_token_deposit:
            raise OverCeiling(f"Deposit above limit. Max {self.max_token_deposit}")

        self.deposited_token[ctx.caller_id] = Amount(
            self.deposited_token.get(ctx.caller_id, Amount(0)) + amount
        )
        self.syscall.emit_event(
            encode_event("TokenDeposited", account=ctx.caller_id, amount=amount)
        )

        self._token().public().transfer_from(
            ctx.caller_id, self.syscall.get_contract_id(), amount
        )

    @public
    def withdraw_token(self, ctx: Context, to: CallerId, amount: Amount) -> None:
        """Send `amount` tokens to `to` (authorized callers only)."""
        self._when_not_paused()
        self._only_authorized(ctx)
        self._validate_withdrawal(to, amount)

        holdings = self._token_holdings()
        if holdings < amount:
            raise InsufficientFunds(
                f"Insufficient tokens. Held {holdings}, requested {amount}"
            )

        self.sent_token[to] = Amount(self.sent_token.get(to, Amount(0)) + amount)
        self.syscall.emit_event(
            encode_event("TokenWithdrawn", caller=ctx.caller_id, to=to, amount=amount)
        )

        try:
            self._token().public().transfer(to, amount)
        except NCFail as e:
            raise TransferFailed(f"Token transfer to {to.hex()} failed") from e

    @public
    def set_authorized(self, ctx: Context, who: CallerId, enabled: bool) -> None:
        """Grant or revoke withdrawal rights (owner only)."""
        self._only_owner(ctx)
        if enabled:
            self.authorized[who] = True
        else:
            del self.authorized[who]
        self.syscall.emit_event(
            encode_event("AuthorizationChanged", who=who, enabled=enabled)
        )

    @public
    def set_limits(
        self, ctx: Context, token_ceiling: Amount, settlement_ceiling: Amount
    ) -> None:
        """Update the per-transaction deposit ceilings (owner only)."""
        self._only_owner(ctx)
        if token_ceiling <= 0 or settlement_ceiling <= 0:
            raise InvalidAmount("Limits must be positive")
        self.max_token_deposit = Amount(token_ceiling)
        self.max_settlement_deposit = Amount(settlement_ceiling)
        self.syscall.emit_event(
            encode_event(
                "LimitsUpdated",
                token_ceiling=token_ceiling,
                settlement_ceiling=settlement_ceiling,
            )
        )

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
            raise NullRecipient("New owner is the null address")
        previous = self.owner
        self.owner = new_owner
        self.syscall.emit_event(
            encode_event(
                "OwnershipTransferred", previous_owner=previous, new_owner=new_owner
            )
        )

    def _token_holdings(self) -> Amount:
        return self._token().view().balance_of(self.syscall.get_contract_id())

    @view
    def balances(self, account: CallerId) -> AccountBalances:
        return AccountBalances(
            deposited_settlement=self.deposited_settlement.get(account, Amount(0)),
            deposited_token=self.deposited_token.get(account, Amount(0)),
            sent_settlement=self.sent_settlement.get(account, Amount(0)),
            sent_token=self.sent_token.get(account, Amount(0)),
        )

    @view
    def is_authorized(self, who: CallerId) -> bool:
        return who == self.owner or self.authorized.get(who, False)

    @view
    def get_ledger_info(self) -> LedgerInfo:
        return LedgerInfo(
            owner=self.owner.hex(),
            token_id=self.token_id.hex(),
            settlement_holdings=self.syscall.get_current_balance(SETTLEMENT_UID),
            token_holdings=self._token_holdings(),
            max_settlement_deposit=self.max_settlement_deposit,
            max_token_deposit=self.max_token_deposit,
            paused=self.paused,
        )
