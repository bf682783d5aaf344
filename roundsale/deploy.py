"""
Wiring of a complete sale: token, ledger bound to the token, and the sale itself.

The sale needs withdrawal rights in the ledger to pay refunds, and a token balance to
deliver purchases from. `deploy_sale` sets both up; `check_deployment` reports the same
figures an operator looks at before opening the sale.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from hathorlib.exceptions import InvalidAddress
from hathorlib.nanocontracts.simulator import NanoSimulator
from hathorlib.nanocontracts.types import Address, Amount, BlueprintId, ContractId, TokenUid
from hathorlib.utils.address import decode_address, get_address_b58_from_bytes

from roundsale.conf import settings
from roundsale.nanocontracts.blueprints.ledger import Ledger
from roundsale.nanocontracts.blueprints.sale import Sale
from roundsale.nanocontracts.blueprints.token import Token

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SaleBlueprints:
    token: BlueprintId
    ledger: BlueprintId
    sale: BlueprintId


@dataclass(frozen=True, slots=True)
class SaleDeployment:
    token_id: ContractId
    ledger_id: ContractId
    sale_id: ContractId


@dataclass(frozen=True, slots=True)
class DeploymentStatus:
    tokens_in_sale: int
    sale_authorized: bool
    settlement_in_ledger: int


def parse_address(address58: str) -> Address:
    """Decode a base58 P2PKH address of the configured network.

    :raises InvalidAddress: if the address is malformed or belongs to another network
    """
    address = decode_address(address58)
    if address[:1] != settings.P2PKH_VERSION_BYTE:
        raise InvalidAddress(f'Not a P2PKH address of {settings.NETWORK_NAME}: {address58}')
    return Address(address)


def register_blueprints(simulator: NanoSimulator) -> SaleBlueprints:
    return SaleBlueprints(
        token=simulator.register_blueprint_class(Token),
        ledger=simulator.register_blueprint_class(Ledger),
        sale=simulator.register_blueprint_class(Sale),
    )


def deploy_sale(
    simulator: NanoSimulator,
    owner: Address,
    *,
    token_name: str,
    token_symbol: str,
    global_hard_cap: int,
    soft_cap: int,
    individual_cap: int,
    sale_token_allocation: int,
    max_supply: Optional[int] = None,
) -> SaleDeployment:
    """Create and link the token, ledger and sale contracts, all owned by `owner`.

    `sale_token_allocation` is minted to the sale as its working balance; it must
    cover every round's `hard_cap * rate`.
    """
    blueprints = register_blueprints(simulator)
    if max_supply is None:
        max_supply = settings.TOKEN_MAX_SUPPLY
    logger.info('deploying sale owned by %s', get_address_b58_from_bytes(owner))

    token_id = simulator.create_contract_raw(
        blueprints.token,
        caller=owner,
        args=(token_name, token_symbol, Amount(max_supply)),
    ).contract_id
    logger.info('token %s deployed at %s', token_symbol, token_id.hex())

    ledger_id = simulator.create_contract_raw(
        blueprints.ledger, caller=owner, args=(token_id,)
    ).contract_id
    logger.info('ledger deployed at %s', ledger_id.hex())

    sale_id = simulator.create_contract_raw(
        blueprints.sale,
        caller=owner,
        args=(
            token_id,
            ledger_id,
            Amount(global_hard_cap),
            Amount(soft_cap),
            Amount(individual_cap),
        ),
    ).contract_id
    logger.info('sale deployed at %s', sale_id.hex())

    simulator.call_public(ledger_id, 'set_authorized', caller=owner, args=(sale_id, True))
    simulator.call_public(
        token_id, 'mint', caller=owner, args=(sale_id, Amount(sale_token_allocation))
    )
    logger.info('sale authorized in ledger and funded with %d tokens', sale_token_allocation)

    return SaleDeployment(token_id=token_id, ledger_id=ledger_id, sale_id=sale_id)


def check_deployment(simulator: NanoSimulator, deployment: SaleDeployment) -> DeploymentStatus:
    status = DeploymentStatus(
        tokens_in_sale=simulator.call_view(deployment.token_id, 'balance_of', deployment.sale_id),
        sale_authorized=simulator.call_view(deployment.ledger_id, 'is_authorized', deployment.sale_id),
        settlement_in_ledger=simulator.get_balance(
            deployment.ledger_id, TokenUid(settings.SETTLEMENT_TOKEN_UID)
        ).value,
    )
    logger.info(
        'tokens in sale: %d, sale authorized: %s, settlement in ledger: %d',
        status.tokens_in_sale,
        status.sale_authorized,
        status.settlement_in_ledger,
    )
    return status
