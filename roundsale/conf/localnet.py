from roundsale.conf.settings import SaleSettings

SETTINGS = SaleSettings(
    NETWORK_NAME='localnet',
    SETTLEMENT_TOKEN_UID=b'\x00',
    DECIMAL_PLACES=2,
    P2PKH_VERSION_BYTE=b'\x49',
    MIN_RATE=1,
    MAX_RATE=1_000_000,
    MIN_INDIVIDUAL_CAP=1_00,
    MAX_INDIVIDUAL_CAP=10_000_000_00,
    MIN_SOFT_CAP=1_00,
    DEFAULT_MAX_SETTLEMENT_DEPOSIT=1_000_000_00,
    DEFAULT_MAX_TOKEN_DEPOSIT=1_000_000_000_00,
    TOKEN_MAX_SUPPLY=1_000_000_000_00,
)
