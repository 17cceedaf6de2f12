# certledger/core/config.py
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _default_database_url() -> str:
    data_dir = os.path.abspath(os.getenv("DATA_DIR", "./data"))
    os.makedirs(data_dir, exist_ok=True)
    return os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(data_dir, 'certledger.db')}")


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    # storage / auth
    DATABASE_URL: str = Field(default_factory=_default_database_url)
    SECRET_KEY: str = Field(default_factory=lambda: os.getenv("SECRET_KEY", "CHANGE_ME_SUPER_SECRET"))
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default_factory=lambda: int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30")))
    LOG_LEVEL: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # ledger
    BLOCKCHAIN_RPC_URL: str = Field(default_factory=lambda: os.getenv("BLOCKCHAIN_RPC_URL", ""))
    BLOCKCHAIN_PRIVATE_KEY: str = Field(default_factory=lambda: os.getenv("BLOCKCHAIN_PRIVATE_KEY", ""))
    CERTIFICATE_CONTRACT_ADDRESS: str = Field(default_factory=lambda: os.getenv("CERTIFICATE_CONTRACT_ADDRESS", ""))
    BLOCKCHAIN_NETWORK: str = Field(default_factory=lambda: os.getenv("BLOCKCHAIN_NETWORK", "sepolia"))
    GAS_SAFETY_MARGIN: float = Field(default_factory=lambda: float(os.getenv("GAS_SAFETY_MARGIN", "0.2")),
                                     ge=0.1, validate_default=True)
    LEDGER_INCLUSION_TIMEOUT_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LEDGER_INCLUSION_TIMEOUT_SECONDS", "180")))
    LEDGER_POLL_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LEDGER_POLL_SECONDS", "2")))
    LEDGER_EVENT_BATCH_BLOCKS: int = Field(default_factory=lambda: int(os.getenv("LEDGER_EVENT_BATCH_BLOCKS", "500")))
    LEDGER_BACKOFF_BASE_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LEDGER_BACKOFF_BASE_SECONDS", "1")))
    LEDGER_BACKOFF_MAX_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LEDGER_BACKOFF_MAX_SECONDS", "60")))
    SUBMISSION_CLAIM_TTL_SECONDS: int = Field(default_factory=lambda: int(os.getenv("SUBMISSION_CLAIM_TTL_SECONDS", "600")))

    # content store
    IPFS_API_URL: str = Field(default_factory=lambda: os.getenv("IPFS_API_URL", "https://ipfs.infura.io:5001"))
    IPFS_GATEWAY: str = Field(default_factory=lambda: os.getenv("IPFS_GATEWAY", "https://ipfs.io/ipfs/"))
    IPFS_TIMEOUT_SECONDS: float = Field(default_factory=lambda: float(os.getenv("IPFS_TIMEOUT_SECONDS", "30")))
    INFURA_PROJECT_ID: str = Field(default_factory=lambda: os.getenv("INFURA_PROJECT_ID", ""))
    INFURA_PROJECT_SECRET: str = Field(default_factory=lambda: os.getenv("INFURA_PROJECT_SECRET", ""))

    # issuance
    CUSTODIAL_ADDRESS: str = Field(default_factory=lambda: os.getenv("CUSTODIAL_ADDRESS", ZERO_ADDRESS))
    CERTIFICATE_ISSUER_NAME: str = Field(default_factory=lambda: os.getenv("CERTIFICATE_ISSUER_NAME", "Institution"))
    CERTIFICATE_TEMPLATE_URL: str = Field(default_factory=lambda: os.getenv("CERTIFICATE_TEMPLATE_URL", ""))
    UI_URL: str = Field(default_factory=lambda: os.getenv("UI_URL", "http://localhost:5173"))

    # reconciliation
    RECONCILER_ENABLED: bool = Field(default_factory=lambda: _env_bool("RECONCILER_ENABLED"))
    RECONCILE_INTERVAL_SECONDS: float = Field(default_factory=lambda: float(os.getenv("RECONCILE_INTERVAL_SECONDS", "60")))
    RECONCILE_PENDING_AGE_SECONDS: int = Field(default_factory=lambda: int(os.getenv("RECONCILE_PENDING_AGE_SECONDS", "300")))
    # first block for the event consumer when no cursor is saved yet (default: chain head)
    RECONCILE_START_BLOCK: Optional[int] = Field(
        default_factory=lambda: int(os.environ["RECONCILE_START_BLOCK"]) if os.getenv("RECONCILE_START_BLOCK") else None)


settings = Settings()
