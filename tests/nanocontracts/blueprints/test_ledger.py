from hathorlib.nanocontracts import Blueprint, Context
from hathorlib.nanocontracts.exception import NCForbiddenAction
from hathorlib.nanocontracts.types import (
    Amount,
    ContractId,
    NCArgs,
    fallback,
    public,
    view,
)

from roundsale.nanocontracts.blueprints.ledger import (
    NULL_ADDRESS,
    TRANSFER_HOOK,
    InsufficientFunds,
    InvalidActions,
    InvalidAmount,
    Ledger,
    NullRecipient,
    OverCeiling,
    Paused,
    TransferFailed,
    Unauthorized,
    ZeroAmount,
)
from roundsale.nanocontracts.blueprints.token import InsufficientAllowance, Token
from tests.nanocontracts.blueprints.unittest import BlueprintTestCase


class Observer(Blueprint):
    """Records what the ledger reports while a transfer to it is in flight."""

    ledger_id: ContractId
    seen_sent: int

    @public
    def initialize(self, ctx: Context, ledger_id: ContractId) -> None:
        self.ledger_id = ledger_id
        self.seen_sent = -1

    @public(allow_deposit=True)
    def on_ledger_transfer(self, ctx: Context) -> None:
        ledger = self.syscall.get_contract(self.ledger_id, blueprint_id=None)
        balances = ledger.view().balances(self.syscall.get_contract_id())
        self.seen_sent = balances.sent_settlement

    @view
    def get_seen_sent(self) -> int:
        return self.seen_sent


class FallbackRecipient(Blueprint):
    last_method: str

    @public
    def initialize(self, ctx: Context) -> None:
        self.last_method = ""

    @fallback(allow_deposit=True)
    def fallback(self, ctx: Context, method_name: str, nc_args: NCArgs) -> None:
        self.last_method = method_name

    @view
    def get_last_method(self) -> str:
        return self.last_method


class Rejecting(Blueprint):
    value: int

    @public
    def initialize(self, ctx: Context) -> None:
        self.value = 0


class LedgerTestCase(BlueprintTestCase):
    def setUp(self):
        super().setUp()

        self.token_blueprint_id = self._register_blueprint_class(Token)
        self.ledger_blueprint_id = self._register_blueprint_class(Ledger)
        self.observer_blueprint_id = self._register_blueprint_class(Observer)
        self.fallback_blueprint_id = self._register_blueprint_class(FallbackRecipient)
        self.rejecting_blueprint_id = self._register_blueprint_class(Rejecting)

        self.owner = self._get_any_address()
        self.token_id = self.create_contract(
            self.token_blueprint_id,
            "Sale Token",
            "SALE",
            Amount(1_000_000_00),
            caller=self.owner,
        )
        self.ledger_id = self.create_contract(
            self.ledger_blueprint_id, self.token_id, caller=self.owner
        )

        self.user = self._get_any_address()

    def _deposit(self, caller, amount: int) -> None:
        self.call_public(
            self.ledger_id,
            "deposit_settlement",
            caller=caller,
            actions=[self.deposit(amount)],
        )

    def _withdraw(self, caller, to, amount: int, actions=None) -> None:
        if actions is None:
            actions = [self.withdrawal(amount)]
        self.call_public(
            self.ledger_id,
            "withdraw_settlement",
            to,
            Amount(amount),
            caller=caller,
            actions=actions,
        )

    def _push(self, caller, to, amount: int) -> None:
        self._withdraw(caller, to, amount, actions=[])

    def _balances(self, account):
        return self.call_view(self.ledger_id, "balances", account)

    def _info(self):
        return self.call_view(self.ledger_id, "get_ledger_info")

    def test_initialize(self):
        info = self._info()
        self.assertEqual(info.owner, self.owner.hex())
        self.assertEqual(info.token_id, self.token_id.hex())
        self.assertFalse(info.paused)
        self.assertEqual(info.settlement_holdings, 0)
        self.assertEqual(info.token_holdings, 0)
        self.assertTrue(self.call_view(self.ledger_id, "is_authorized", self.owner))
        self.assertFalse(self.call_view(self.ledger_id, "is_authorized", self.user))

    def test_deposit_settlement(self):
        self._deposit(self.user, 250_00)

        self.assertEqual(self.get_balance(self.ledger_id), 250_00)
        self.assertEqual(self._info().settlement_holdings, 250_00)
        balances = self._balances(self.user)
        self.assertEqual(balances.deposited_settlement, 250_00)
        self.assertEqual(balances.sent_settlement, 0)

        events = self.get_events(self.ledger_id, "SettlementDeposited")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["amount"], 250_00)
        self.assertEqual(events[0]["account"], self.user.hex())

    def test_deposit_settlement_zero(self):
        with self.assertRaises(ZeroAmount):
            self.call_public(self.ledger_id, "deposit_settlement", caller=self.user)

    def test_deposit_settlement_other_token(self):
        other_uid = self.simulator.create_token("Other", "OTH")
        with self.assertRaises(InvalidActions):
            self.call_public(
                self.ledger_id,
                "deposit_settlement",
                caller=self.user,
                actions=[self.deposit(10_00, other_uid)],
            )
        self.assertEqual(self.get_balance(self.ledger_id, other_uid), 0)

    def test_withdrawal_action_rejected(self):
        self._deposit(self.user, 10_00)
        with self.assertRaises(NCForbiddenAction):
            self.call_public(
                self.ledger_id,
                "deposit_settlement",
                caller=self.user,
                actions=[self.withdrawal(10_00)],
            )
        self.assertEqual(self.get_balance(self.ledger_id), 10_00)

    def test_deposit_above_ceiling(self):
        self.call_public(
            self.ledger_id,
            "set_limits",
            Amount(1_000_00),
            Amount(100_00),
            caller=self.owner,
        )
        self._deposit(self.user, 100_00)
        with self.assertRaises(OverCeiling):
            self._deposit(self.user, 100_01)
        self.assertEqual(self.get_balance(self.ledger_id), 100_00)
        self.assertEqual(self._balances(self.user).deposited_settlement, 100_00)

    def test_plain_transfer_is_a_deposit(self):
        self.call_public(
            self.ledger_id,
            "send",
            caller=self.user,
            actions=[self.deposit(40_00)],
        )
        self.assertEqual(self.get_balance(self.ledger_id), 40_00)
        self.assertEqual(self._balances(self.user).deposited_settlement, 40_00)

    def test_plain_transfer_above_ceiling(self):
        self.call_public(
            self.ledger_id,
            "set_limits",
            Amount(1_000_00),
            Amount(10_00),
            caller=self.owner,
        )
        with self.assertRaises(OverCeiling):
            self.call_public(
                self.ledger_id,
                "send",
                caller=self.user,
                actions=[self.deposit(10_01)],
            )
        self.assertEqual(self.get_balance(self.ledger_id), 0)

    def test_withdraw_settlement_by_owner(self):
        self._deposit(self.user, 100_00)
        recipient = self._get_any_address()

        self._withdraw(self.owner, recipient, 30_00)

        self.assertEqual(self.get_balance(self.ledger_id), 70_00)
        self.assertEqual(self._balances(recipient).sent_settlement, 30_00)
        # Deposited counters are not spent by withdrawals.
        self.assertEqual(self._balances(self.user).deposited_settlement, 100_00)

        events = self.get_events(self.ledger_id, "SettlementWithdrawn")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["to"], recipient.hex())

    def test_pulled_withdrawal_needs_matching_action(self):
        self._deposit(self.user, 100_00)
        recipient = self._get_any_address()

        with self.assertRaises(TransferFailed):
            self._withdraw(self.owner, recipient, 30_00, actions=[])
        with self.assertRaises(TransferFailed):
            self._withdraw(
                self.owner, recipient, 30_00, actions=[self.withdrawal(20_00)]
            )

        self.assertEqual(self.get_balance(self.ledger_id), 100_00)
        self.assertEqual(self._balances(recipient).sent_settlement, 0)

    def test_withdraw_settlement_by_authorized(self):
        operator = self._get_any_address()
        self.call_public(
            self.ledger_id, "set_authorized", operator, True, caller=self.owner
        )
        self._deposit(self.user, 100_00)
        self._withdraw(operator, self.user, 100_00)
        self.assertEqual(self.get_balance(self.ledger_id), 0)

        self.call_public(
            self.ledger_id, "set_authorized", operator, False, caller=self.owner
        )
        self.assertFalse(self.call_view(self.ledger_id, "is_authorized", operator))
        self._deposit(self.user, 100_00)
        with self.assertRaises(Unauthorized):
            self._withdraw(operator, self.user, 100_00)

    def test_set_authorized_only_owner(self):
        with self.assertRaises(Unauthorized):
            self.call_public(
                self.ledger_id, "set_authorized", self.user, True, caller=self.user
            )
        self.assertFalse(self.call_view(self.ledger_id, "is_authorized", self.user))

    def test_scenario_unauthorized_then_insufficient(self):
        self._deposit(self.user, 50_00)

        with self.assertRaises(Unauthorized):
            self._withdraw(self.user, self.user, 10_00)

        with self.assertRaises(InsufficientFunds):
            self._withdraw(self.owner, self.user, 50_01)

        self.assertEqual(self.get_balance(self.ledger_id), 50_00)
        self.assertEqual(self._balances(self.user).sent_settlement, 0)

    def test_withdraw_invalid_arguments(self):
        self._deposit(self.user, 50_00)
        with self.assertRaises(ZeroAmount):
            self._withdraw(self.owner, self.user, 0, actions=[])
        with self.assertRaises(NullRecipient):
            self._withdraw(self.owner, NULL_ADDRESS, 10_00)
        self.assertEqual(self.get_balance(self.ledger_id), 50_00)

    def test_withdraw_records_before_sending(self):
        observer_id = self.create_contract(self.observer_blueprint_id, self.ledger_id)
        self._deposit(self.user, 100_00)

        self._push(self.owner, observer_id, 30_00)

        self.assertEqual(self.call_view(observer_id, "get_seen_sent"), 30_00)
        self.assertEqual(self.get_balance(observer_id), 30_00)
        self.assertEqual(self.get_balance(self.ledger_id), 70_00)
        # The transfer hook is not a deposit into the ledger.
        self.assertEqual(self._balances(observer_id).deposited_settlement, 0)

    def test_push_to_contract_takes_no_actions(self):
        observer_id = self.create_contract(self.observer_blueprint_id, self.ledger_id)
        self._deposit(self.user, 100_00)

        with self.assertRaises(InvalidActions):
            self._withdraw(self.owner, observer_id, 30_00)
        self.assertEqual(self.get_balance(self.ledger_id), 100_00)

    def test_push_reaches_fallback(self):
        target_id = self.create_contract(self.fallback_blueprint_id)
        self._deposit(self.user, 100_00)

        self._push(self.owner, target_id, 25_00)

        self.assertEqual(self.get_balance(target_id), 25_00)
        self.assertEqual(self.call_view(target_id, "get_last_method"), TRANSFER_HOOK)

    def test_withdraw_to_rejecting_contract(self):
        target_id = self.create_contract(self.rejecting_blueprint_id)
        self._deposit(self.user, 100_00)
        events_before = len(self.get_events(self.ledger_id, "SettlementWithdrawn"))

        with self.assertRaises(TransferFailed):
            self._push(self.owner, target_id, 30_00)

        self.assertEqual(self.get_balance(self.ledger_id), 100_00)
        self.assertEqual(self.get_balance(target_id), 0)
        self.assertEqual(self._balances(target_id).sent_settlement, 0)
        self.assertEqual(
            len(self.get_events(self.ledger_id, "SettlementWithdrawn")), events_before
        )

    def test_pause(self):
        self._deposit(self.user, 100_00)

        with self.assertRaises(Unauthorized):
            self.call_public(self.ledger_id, "pause", caller=self.user)

        self.call_public(self.ledger_id, "pause", caller=self.owner)
        with self.assertRaises(Paused):
            self._deposit(self.user, 10_00)
        with self.assertRaises(Paused):
            self._withdraw(self.owner, self.user, 10_00)
        self.assertEqual(self._balances(self.user).deposited_settlement, 100_00)
        self.assertTrue(self._info().paused)

        self.call_public(self.ledger_id, "unpause", caller=self.owner)
        self._withdraw(self.owner, self.user, 10_00)
        self.assertEqual(self.get_balance(self.ledger_id), 90_00)

    def test_set_limits(self):
        with self.assertRaises(InvalidAmount):
            self.call_public(
                self.ledger_id, "set_limits", Amount(0), Amount(10_00), caller=self.owner
            )
        with self.assertRaises(Unauthorized):
            self.call_public(
                self.ledger_id,
                "set_limits",
                Amount(10_00),
                Amount(10_00),
                caller=self.user,
            )

        self.call_public(
            self.ledger_id, "set_limits", Amount(5_00), Amount(7_00), caller=self.owner
        )
        info = self._info()
        self.assertEqual(info.max_token_deposit, 5_00)
        self.assertEqual(info.max_settlement_deposit, 7_00)

    def test_transfer_ownership(self):
        new_owner = self._get_any_address()
        self.call_public(
            self.ledger_id, "transfer_ownership", new_owner, caller=self.owner
        )
        self._deposit(self.user, 10_00)
        with self.assertRaises(Unauthorized):
            self._withdraw(self.owner, self.user, 10_00)
        self._withdraw(new_owner, self.user, 10_00)
        self.assertEqual(self._info().owner, new_owner.hex())

    def _fund_ledger_with_tokens(self, amount: int) -> None:
        self.call_public(
            self.token_id, "mint", self.user, Amount(amount), caller=self.owner
        )
        self.call_public(
            self.token_id, "approve", self.ledger_id, Amount(amount), caller=self.user
        )
        self.call_public(
            self.ledger_id, "deposit_token", Amount(amount), caller=self.user
        )

    def test_token_deposit_and_withdrawal(self):
        self.call_public(
            self.token_id, "mint", self.user, Amount(500_00), caller=self.owner
        )
        with self.assertRaises(InsufficientAllowance):
            self.call_public(
                self.ledger_id, "deposit_token", Amount(200_00), caller=self.user
            )
        self.assertEqual(self._balances(self.user).deposited_token, 0)

        self.call_public(
            self.token_id, "approve", self.ledger_id, Amount(200_00), caller=self.user
        )
        self.call_public(
            self.ledger_id, "deposit_token", Amount(200_00), caller=self.user
        )
        self.assertEqual(
            self.call_view(self.token_id, "balance_of", self.ledger_id), 200_00
        )
        self.assertEqual(self._info().token_holdings, 200_00)
        self.assertEqual(self._balances(self.user).deposited_token, 200_00)

        recipient = self._get_any_address()
        self.call_public(
            self.ledger_id, "withdraw_token", recipient, Amount(50_00), caller=self.owner
        )
        self.assertEqual(self.call_view(self.token_id, "balance_of", recipient), 50_00)
        self.assertEqual(self._balances(recipient).sent_token, 50_00)

        with self.assertRaises(InsufficientFunds):
            self.call_public(
                self.ledger_id,
                "withdraw_token",
                recipient,
                Amount(150_01),
                caller=self.owner,
            )
        with self.assertRaises(Unauthorized):
            self.call_public(
                self.ledger_id, "withdraw_token", self.user, Amount(1_00), caller=self.user
            )

    def test_token_deposit_above_ceiling(self):
        self.call_public(
            self.ledger_id, "set_limits", Amount(10_00), Amount(10_00), caller=self.owner
        )
        with self.assertRaises(OverCeiling):
            self._fund_ledger_with_tokens(10_01)
        self.assertEqual(self._balances(self.user).deposited_token, 0)

    def test_withdraw_token_while_token_paused(self):
        self._fund_ledger_with_tokens(100_00)
        self.call_public(self.token_id, "pause", caller=self.owner)
        recipient = self._get_any_address()

        with self.assertRaises(TransferFailed):
            self.call_public(
                self.ledger_id,
                "withdraw_token",
                recipient,
                Amount(10_00),
                caller=self.owner,
            )

        self.assertEqual(self._balances(recipient).sent_token, 0)
        self.assertEqual(
            self.call_view(self.token_id, "balance_of", self.ledger_id), 100_00
        )
