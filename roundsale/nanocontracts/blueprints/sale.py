from typing import NamedTuple

from hathorlib.nanocontracts import Blueprint, Context, NCFail
from hathorlib.nanocontracts.types import (
    Address,
    Amount,
    CallerId,
    ContractId,
    NCDepositAction,
    NCWithdrawalAction,
    Timestamp,
    TokenUid,
    export,
    public,
    view,
)

from roundsale.conf import settings
from roundsale.nanocontracts.events import encode_event

SETTLEMENT_UID = TokenUid(settings.SETTLEMENT_TOKEN_UID)
NULL_ADDRESS = Address(b"\x00" * 25)
NO_ROUND = 0


class SaleState:
    """Sale-wide states. Both finalized states are terminal."""

    OPEN = 0  # Rounds can be created, activated and bought into
    FINALIZED_SUCCESS = 1  # Raised at least the soft cap
    FINALIZED_FAILED = 2  # Raised less than the soft cap, refunds enabled


SALE_TRANSITIONS: dict[int, frozenset[int]] = {
    SaleState.OPEN: frozenset({SaleState.FINALIZED_SUCCESS, SaleState.FINALIZED_FAILED}),
    SaleState.FINALIZED_SUCCESS: frozenset(),
    SaleState.FINALIZED_FAILED: frozenset(),
}


class RoundStatus:
    """Round states, derived from the stored flags and a timestamp."""

    CREATED = 0  # Cap reserved, not sellable
    ACTIVE = 1  # The one round accepting purchases
    COMPLETED = 2  # Hard cap reached
    EXPIRED = 3  # Time window elapsed before the cap was reached


class SaleInfo(NamedTuple):
    """General sale information."""

    token_id: str
    ledger_id: str
    state: int
    sale_finished: bool
    paused: bool
    current_round: int
    total_rounds: int
    total_raised: int
    total_sold: int
    global_hard_cap: int
    reserved_round_caps: int
    soft_cap: int
    individual_cap: int
    participants: int


class RoundInfo(NamedTuple):
    """Configuration and progress of one round."""

    round_id: int
    rate: int
    hard_cap: int
    min_buy: int
    max_buy: int
    raised: int
    start_time: int
    end_time: int
    whitelist_only: bool
    active: bool
    status: int


class InvestorInfo(NamedTuple):
    """Investor-specific information."""

    total_contributed: int
    tokens_received: int
    last_purchase_time: int
    whitelisted: bool


class SaleProgress(NamedTuple):
    """Current sale progress metrics."""

    percent_filled: int
    percent_soft_cap: int
    is_successful: bool


class SaleError(NCFail):
    """Base error for sale operations."""

    pass


class Unauthorized(SaleError):
    pass


class Paused(SaleError):
    pass


class InvalidState(SaleError):
    pass


class InvalidActions(SaleError):
    pass


class InvalidAddress(SaleError):
    pass


class InvalidAmount(SaleError):
    pass


class InvalidRate(SaleError):
    pass


class InvalidTimeRange(SaleError):
    pass


class ExceedsGlobalCap(SaleError):
    """Raised when a new round would reserve more than the global hard cap."""

    pass


class InvalidRoundId(SaleError):
    pass


class RoundMissing(SaleError):
    pass


class TooEarly(SaleError):
    pass


class AlreadyActive(SaleError):
    pass


class NoActiveRound(SaleError):
    pass


class RoundInactive(SaleError):
    pass


class OutOfTimeWindow(SaleError):
    pass


class BelowMinimum(SaleError):
    pass


class AboveMaximum(SaleError):
    pass


class NotWhitelisted(SaleError):
    pass


class RoundCapExceeded(SaleError):
    pass


class GlobalCapExceeded(SaleError):
    pass


class IndividualCapExceeded(SaleError):
    pass


class AlreadyFinalized(SaleError):
    pass


class RoundStillActive(SaleError):
    pass


class NotFinalized(SaleError):
    pass


class SoftCapMet(SaleError):
    pass


class NoContribution(SaleError):
    pass


@export
class Sale(Blueprint):
    """Round-based token sale.

    The life cycle of contracts using this blueprint is the following:

    1. [Owner] Create the sale bound to a token and a ledger, then fund the sale's token
       balance and authorize the sale in the ledger.
    2. [Owner] `create_round(...)` and `activate_round(...)`, one round active at a time.
    3. [Investor] `buy_tokens()` with a settlement deposit. Funds go straight to the
       ledger and tokens straight to the buyer. A round that hits its hard cap closes.
    4. [Owner] `finalize_sale()` once no round is running.
    5. [Investor] `refund()` if the soft cap was missed. Wallets attach a withdrawal of
       their whole contribution; contracts attach nothing and receive the funds through
       their `on_ledger_transfer` method or fallback. Tokens already received stay with
       the investor.

    While paused, only `pause`, `unpause` and `transfer_ownership` go through.
    Round data is kept in one dict per attribute, keyed by the 1-based round id.
    """

    # Access control and linked contracts
    owner: CallerId
    token_id: ContractId
    ledger_id: ContractId

    # Sale state
    state: int
    paused: bool
    global_hard_cap: Amount
    soft_cap: Amount
    individual_cap: Amount
    total_raised: Amount
    total_sold: Amount
    participants_count: int

    # Rounds
    total_rounds: int
    current_round: int
    reserved_round_caps: Amount  # Sum of hard caps of every created round
    round_rates: dict[int, int]
    round_hard_caps: dict[int, Amount]
    round_min_buys: dict[int, Amount]
    round_max_buys: dict[int, Amount]
    round_raised: dict[int, Amount]
    round_start_times: dict[int, Timestamp]
    round_end_times: dict[int, Timestamp]
    round_whitelist_only: dict[int, bool]
    round_active: dict[int, bool]
    round_completed: dict[int, bool]

    # Investors
    whitelist: dict[CallerId, bool]
    contributions: dict[CallerId, Amount]
    tokens_received: dict[CallerId, Amount]
    last_purchase_times: dict[CallerId, Timestamp]

    @public
    def initialize(
        self,
        ctx: Context,
        token_id: ContractId,
        ledger_id: ContractId,
        global_hard_cap: Amount,
        soft_cap: Amount,
        individual_cap: Amount,
    ) -> None:
        """Initialize the sale; the caller becomes the owner."""
        if global_hard_cap <= 0:
            raise InvalidAmount("Global hard cap must be positive")
        self._validate_soft_cap(soft_cap, global_hard_cap)
        self._validate_individual_cap(individual_cap)

        self.owner = ctx.caller_id
        self.token_id = token_id
        self.ledger_id = ledger_id

        self.state = SaleState.OPEN
        self.paused = False
        self.global_hard_cap = Amount(global_hard_cap)
        self.soft_cap = Amount(soft_cap)
        self.individual_cap = Amount(individual_cap)
        self.total_raised = Amount(0)
        self.total_sold = Amount(0)
        self.participants_count = 0

        self.total_rounds = 0
        self.current_round = NO_ROUND
        self.reserved_round_caps = Amount(0)
        self.round_rates = {}
        self.round_hard_caps = {}
        self.round_min_buys = {}
        self.round_max_buys = {}
        self.round_raised = {}
        self.round_start_times = {}
        self.round_end_times = {}
        self.round_whitelist_only = {}
        self.round_active = {}
        self.round_completed = {}

        self.whitelist = {}
        self.contributions = {}
        self.tokens_received = {}
        self.last_purchase_times = {}

    # Validation helpers

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner:
            raise Unauthorized("Only owner")

    def _when_not_paused(self) -> None:
        if self.paused:
            raise Paused("Sale is paused")

    def _only_open(self) -> None:
        if self.state != SaleState.OPEN:
            raise AlreadyFinalized("Sale already finalized")

    def _validate_soft_cap(self, soft_cap: Amount, global_hard_cap: Amount) -> None:
        if soft_cap < settings.MIN_SOFT_CAP or soft_cap > global_hard_cap:
            raise InvalidAmount(
                f"Soft cap must be between {settings.MIN_SOFT_CAP} and {global_hard_cap}"
            )

    def _validate_individual_cap(self, individual_cap: Amount) -> None:
        if (
            individual_cap < settings.MIN_INDIVIDUAL_CAP
            or individual_cap > settings.MAX_INDIVIDUAL_CAP
        ):
            raise InvalidAmount(
                f"Individual cap must be between {settings.MIN_INDIVIDUAL_CAP} "
                f"and {settings.MAX_INDIVIDUAL_CAP}"
            )

    def _transition(self, new_state: int) -> None:
        if new_state not in SALE_TRANSITIONS[self.state]:
            raise InvalidState(f"Cannot go from state {self.state} to {new_state}")
        self.state = new_state

    def _get_payment(self, ctx: Context) -> Amount:
        """Settlement amount deposited with the call."""
        for token_uid in ctx.actions:
            if token_uid != SETTLEMENT_UID:
                raise InvalidActions("Only the settlement asset is accepted")
        actions = ctx.actions.get(SETTLEMENT_UID, ())
        if not actions:
            return Amount(0)
        if len(actions) != 1 or not isinstance(actions[0], NCDepositAction):
            raise InvalidActions("Expected a single deposit action")
        return Amount(actions[0].amount)

    def _is_running(self, round_id: int, now: Timestamp) -> bool:
        """Whether `round_id` is flagged active and its window has not elapsed."""
        return self.round_active.get(round_id, False) and now <= self.round_end_times[round_id]

    def _round_status(self, round_id: int, now: Timestamp) -> int:
        if self.round_completed[round_id]:
            return RoundStatus.COMPLETED
        if now > self.round_end_times[round_id]:
            return RoundStatus.EXPIRED
        if self.round_active[round_id]:
            return RoundStatus.ACTIVE
        return RoundStatus.CREATED

    def _ledger(self):
        return self.syscall.get_contract(self.ledger_id, blueprint_id=None)

    def _token(self):
        return self.syscall.get_contract(self.token_id, blueprint_id=None)

    # Rounds

    @public
    def create_round(
        self,
        ctx: Context,
        rate: int,
        hard_cap: Amount,
        min_buy: Amount,
        max_buy: Amount,
        start_time: Timestamp,
        end_time: Timestamp,
        whitelist_only: bool,
    ) -> int:
        """Create an inactive round and reserve its hard cap. Returns the round id."""
        self._only_owner(ctx)
        self._when_not_paused()
        self._only_open()

        if rate < settings.MIN_RATE or rate > settings.MAX_RATE:
            raise InvalidRate(
                f"Rate must be between {settings.MIN_RATE} and {settings.MAX_RATE}"
            )
        if hard_cap <= 0 or min_buy <= 0:
            raise InvalidAmount("Hard cap and minimum buy must be positive")
        if min_buy > max_buy:
            raise InvalidAmount("Minimum buy above maximum buy")
        if start_time >= end_time:
            raise InvalidTimeRange("Start time must be before end time")
        if start_time < ctx.block.timestamp:
            raise InvalidTimeRange("Start time is in the past")
        if self.reserved_round_caps + hard_cap > self.global_hard_cap:
            raise ExceedsGlobalCap(
                f"Round caps would exceed the global hard cap. "
                f"Available {self.global_hard_cap - self.reserved_round_caps}"
            )

        round_id = self.total_rounds + 1
        self.total_rounds = round_id
        self.reserved_round_caps = Amount(self.reserved_round_caps + hard_cap)

        self.round_rates[round_id] = rate
        self.round_hard_caps[round_id] = Amount(hard_cap)
        self.round_min_buys[round_id] = Amount(min_buy)
        self.round_max_buys[round_id] = Amount(max_buy)
        self.round_raised[round_id] = Amount(0)
        self.round_start_times[round_id] = Timestamp(start_time)
        self.round_end_times[round_id] = Timestamp(end_time)
        self.round_whitelist_only[round_id] = whitelist_only
        self.round_active[round_id] = False
        self.round_completed[round_id] = False

        self.syscall.emit_event(
            encode_event(
                "RoundCreated",
                round_id=round_id,
                rate=rate,
                hard_cap=hard_cap,
                min_buy=min_buy,
                max_buy=max_buy,
                start_time=start_time,
                end_time=end_time,
                whitelist_only=whitelist_only,
            )
        )
        return round_id

    @public
    def activate_round(self, ctx: Context, round_id: int) -> None:
        """Make `round_id` the active round, deactivating the previous one."""
        self._only_owner(ctx)
        self._when_not_paused()
        self._only_open()

        if round_id <= NO_ROUND:
            raise InvalidRoundId("Round id must be positive")
        if round_id > self.total_rounds:
            raise RoundMissing(f"Round {round_id} does not exist")
        if ctx.block.timestamp < self.round_start_times[round_id]:
            raise TooEarly("Round has not started")
        if self.round_active[round_id]:
            raise AlreadyActive("Round already active")
        if self.round_completed[round_id]:
            raise InvalidState("Round already completed")

        previous = self.current_round
        if previous != NO_ROUND and self.round_active[previous]:
            self.round_active[previous] = False
            self.syscall.emit_event(encode_event("RoundDeactivated", round_id=previous))

        self.round_active[round_id] = True
        self.current_round = round_id
        self.syscall.emit_event(encode_event("RoundActivated", round_id=round_id))

    @public
    def deactivate_round(self, ctx: Context) -> None:
        """Stop the current round. It can be activated again later."""
        self._only_owner(ctx)
        self._when_not_paused()
        round_id = self.current_round
        if round_id == NO_ROUND:
            raise NoActiveRound("No active round")
        if not self.round_active[round_id]:
            raise RoundInactive("Round is not active")

        self.round_active[round_id] = False
        self.syscall.emit_event(encode_event("RoundDeactivated", round_id=round_id))

    # Purchases

    @public(allow_deposit=True)
    def buy_tokens(self, ctx: Context) -> None:
        """Buy tokens in the current round with the settlement asset deposited."""
        self._when_not_paused()
        self._only_open()
        amount = self._get_payment(ctx)
        if amount == 0:
            raise InvalidAmount("Amount must be positive")

        now = Timestamp(ctx.block.timestamp)
        round_id = self.current_round
        if round_id == NO_ROUND:
            raise NoActiveRound("No active round")
        if not self.round_active[round_id]:
            raise RoundInactive("Round is not active")
        if not (
            self.round_start_times[round_id] <= now <= self.round_end_times[round_id]
        ):
            raise OutOfTimeWindow("Outside the round time window")
        if amount < self.round_min_buys[round_id]:
            raise BelowMinimum(f"Amount below minimum {self.round_min_buys[round_id]}")
        if amount > self.round_max_buys[round_id]:
            raise AboveMaximum(f"Amount above maximum {self.round_max_buys[round_id]}")

        buyer = ctx.caller_id
        if self.round_whitelist_only[round_id] and not self.whitelist.get(buyer, False):
            raise NotWhitelisted("Buyer is not whitelisted")

        new_round_raised = self.round_raised[round_id] + amount
        if new_round_raised > self.round_hard_caps[round_id]:
            raise RoundCapExceeded(
                f"Round cap exceeded. Remaining "
                f"{self.round_hard_caps[round_id] - self.round_raised[round_id]}"
            )
        # Round caps are reserved against the global cap when created, so this only
        # fails if reserved_round_caps stops bounding total_raised.
        if self.total_raised + amount > self.global_hard_cap:
            raise GlobalCapExceeded("Global hard cap exceeded")
        contributed = self.contributions.get(buyer, Amount(0))
        if contributed + amount > self.individual_cap:
            raise IndividualCapExceeded(
                f"Individual cap exceeded. Remaining {self.individual_cap - contributed}"
            )

        tokens = Amount(amount * self.round_rates[round_id])

        # Investor
        if buyer not in self.contributions:
            self.participants_count += 1
        self.contributions[buyer] = Amount(contributed + amount)
        self.tokens_received[buyer] = Amount(
            self.tokens_received.get(buyer, Amount(0)) + tokens
        )
        self.last_purchase_times[buyer] = now

        # Round and sale totals
        self.round_raised[round_id] = Amount(new_round_raised)
        self.total_raised = Amount(self.total_raised + amount)
        self.total_sold = Amount(self.total_sold + tokens)

        self.syscall.emit_event(
            encode_event(
                "TokensPurchased",
                buyer=buyer,
                round_id=round_id,
                amount=amount,
                tokens=tokens,
            )
        )

        if new_round_raised == self.round_hard_caps[round_id]:
            self.round_active[round_id] = False
            self.round_completed[round_id] = True
            self.current_round = NO_ROUND
            self.syscall.emit_event(
                encode_event("RoundCompleted", round_id=round_id, raised=new_round_raised)
            )

        self._ledger().public(
            NCDepositAction(token_uid=SETTLEMENT_UID, amount=amount)
        ).deposit_settlement()
        self._token().public().transfer(buyer, tokens)

    # Finalization and refunds

    @public
    def finalize_sale(self, ctx: Context) -> None:
        """End the sale and record whether the soft cap was reached (owner only)."""
        self._only_owner(ctx)
        self._when_not_paused()
        if self.state != SaleState.OPEN:
            raise AlreadyFinalized("Sale already finalized")

        round_id = self.current_round
        now = Timestamp(ctx.block.timestamp)
        if round_id != NO_ROUND and self._is_running(round_id, now):
            raise RoundStillActive(f"Round {round_id} is still active")
        if round_id != NO_ROUND and self.round_active[round_id]:
            # Expired round.
            self.round_active[round_id] = False
            self.syscall.emit_event(encode_event("RoundDeactivated", round_id=round_id))

        success = self.total_raised >= self.soft_cap
        self._transition(
            SaleState.FINALIZED_SUCCESS if success else SaleState.FINALIZED_FAILED
        )
        self.syscall.emit_event(
            encode_event(
                "SaleFinalized",
                total_raised=self.total_raised,
                soft_cap=self.soft_cap,
                success=success,
            )
        )

    @public(allow_withdrawal=True, allow_reentrancy=True)
    def refund(self, ctx: Context) -> None:
        """Return the caller's contribution after a failed sale.

        A wallet must withdraw exactly its contribution in this call. A contract must
        not attach actions; the ledger pays it directly.
        """
        self._when_not_paused()
        if self.state == SaleState.OPEN:
            raise NotFinalized("Sale not finalized")
        if self.total_raised >= self.soft_cap:
            raise SoftCapMet("Soft cap reached, no refunds")

        investor = ctx.caller_id
        contributed = self.contributions.get(investor, Amount(0))
        if contributed == 0:
            raise NoContribution("Nothing to refund")

        self.contributions[investor] = Amount(0)
        self.syscall.emit_event(
            encode_event("Refunded", investor=investor, amount=contributed)
        )

        if isinstance(investor, ContractId):
            if ctx.actions:
                raise InvalidActions("Contracts are refunded without actions")
            self._ledger().public().withdraw_settlement(investor, contributed)
            return

        actions = ctx.actions.get(SETTLEMENT_UID, ())
        if (
            len(ctx.actions) != 1
            or len(actions) != 1
            or not isinstance(actions[0], NCWithdrawalAction)
            or actions[0].amount != contributed
        ):
            raise InvalidActions(f"Expected a withdrawal of exactly {contributed}")
        self._ledger().public(
            NCWithdrawalAction(token_uid=SETTLEMENT_UID, amount=contributed)
        ).withdraw_settlement(investor, contributed)

    @public
    def withdraw_unsold_tokens(self, ctx: Context, to: CallerId) -> None:
        """Send the sale's remaining token balance to `to` after finalization."""
        self._only_owner(ctx)
        self._when_not_paused()
        if self.state == SaleState.OPEN:
            raise NotFinalized("Sale not finalized")
        if to == NULL_ADDRESS:
            raise InvalidAddress("Recipient is the null address")

        unsold = self._token_balance()
        if unsold == 0:
            raise InvalidAmount("No unsold tokens to withdraw")

        self.syscall.emit_event(
            encode_event("UnsoldTokensWithdrawn", to=to, amount=unsold)
        )
        self._token().public().transfer(to, unsold)

    # Administration

    @public
    def add_to_whitelist(self, ctx: Context, account: CallerId) -> None:
        self._only_owner(ctx)
        self._when_not_paused()
        if account == NULL_ADDRESS:
            raise InvalidAddress("Cannot whitelist the null address")
        self.whitelist[account] = True
        self.syscall.emit_event(encode_event("WhitelistAdded", account=account))

    @public
    def remove_from_whitelist(self, ctx: Context, account: CallerId) -> None:
        self._only_owner(ctx)
        self._when_not_paused()
        del self.whitelist[account]
        self.syscall.emit_event(encode_event("WhitelistRemoved", account=account))

    @public
    def set_individual_cap(self, ctx: Context, individual_cap: Amount) -> None:
        """Change the per-investor cap. Past contributions are not re-checked."""
        self._only_owner(ctx)
        self._when_not_paused()
        self._validate_individual_cap(individual_cap)
        self.individual_cap = Amount(individual_cap)
        self.syscall.emit_event(
            encode_event("IndividualCapUpdated", individual_cap=individual_cap)
        )

    @public
    def set_soft_cap(self, ctx: Context, soft_cap: Amount) -> None:
        self._only_owner(ctx)
        self._when_not_paused()
        self._only_open()
        self._validate_soft_cap(soft_cap, self.global_hard_cap)
        self.soft_cap = Amount(soft_cap)
        self.syscall.emit_event(encode_event("SoftCapUpdated", soft_cap=soft_cap))

    @public
    def pause(self, ctx: Context) -> None:
        self._only_owner(ctx)
        if self.paused:
            raise InvalidState("Already paused")
        self.paused = True
        self.syscall.emit_event(encode_event("Paused", account=ctx.caller_id))

    @public
    def unpause(self, ctx: Context) -> None:
        self._only_owner(ctx)
        if not self.paused:
            raise InvalidState("Not paused")
        self.paused = False
        self.syscall.emit_event(encode_event("Unpaused", account=ctx.caller_id))

    @public
    def transfer_ownership(self, ctx: Context, new_owner: CallerId) -> None:
        self._only_owner(ctx)
        if new_owner == NULL_ADDRESS:
            raise InvalidAddress("New owner is the null address")
        previous = self.owner
        self.owner = new_owner
        self.syscall.emit_event(
            encode_event(
                "OwnershipTransferred", previous_owner=previous, new_owner=new_owner
            )
        )

    # Views

    def _token_balance(self) -> Amount:
        return self._token().view().balance_of(self.syscall.get_contract_id())

    def _validate_round_id(self, round_id: int) -> None:
        if round_id <= NO_ROUND:
            raise InvalidRoundId("Round id must be positive")
        if round_id > self.total_rounds:
            raise RoundMissing(f"Round {round_id} does not exist")

    @view
    def get_sale_info(self) -> SaleInfo:
        return SaleInfo(
            token_id=self.token_id.hex(),
            ledger_id=self.ledger_id.hex(),
            state=self.state,
            sale_finished=self.state != SaleState.OPEN,
            paused=self.paused,
            current_round=self.current_round,
            total_rounds=self.total_rounds,
            total_raised=self.total_raised,
            total_sold=self.total_sold,
            global_hard_cap=self.global_hard_cap,
            reserved_round_caps=self.reserved_round_caps,
            soft_cap=self.soft_cap,
            individual_cap=self.individual_cap,
            participants=self.participants_count,
        )

    @view
    def get_round_info(self, round_id: int, now: Timestamp) -> RoundInfo:
        self._validate_round_id(round_id)
        return RoundInfo(
            round_id=round_id,
            rate=self.round_rates[round_id],
            hard_cap=self.round_hard_caps[round_id],
            min_buy=self.round_min_buys[round_id],
            max_buy=self.round_max_buys[round_id],
            raised=self.round_raised[round_id],
            start_time=self.round_start_times[round_id],
            end_time=self.round_end_times[round_id],
            whitelist_only=self.round_whitelist_only[round_id],
            active=self.round_active[round_id],
            status=self._round_status(round_id, now),
        )

    @view
    def get_investor_info(self, account: CallerId) -> InvestorInfo:
        return InvestorInfo(
            total_contributed=self.contributions.get(account, Amount(0)),
            tokens_received=self.tokens_received.get(account, Amount(0)),
            last_purchase_time=self.last_purchase_times.get(account, Timestamp(0)),
            whitelisted=self.whitelist.get(account, False),
        )

    @view
    def is_whitelisted(self, account: CallerId) -> bool:
        return self.whitelist.get(account, False)

    @view
    def can_refund(self, account: CallerId) -> bool:
        return (
            self.state != SaleState.OPEN
            and self.total_raised < self.soft_cap
            and self.contributions.get(account, Amount(0)) > 0
        )

    @view
    def get_sale_progress(self) -> SaleProgress:
        return SaleProgress(
            percent_filled=(self.total_raised * 100) // self.global_hard_cap,
            percent_soft_cap=(self.total_raised * 100) // self.soft_cap,
            is_successful=self.state == SaleState.FINALIZED_SUCCESS,
        )
