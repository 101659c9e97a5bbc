from typing import List, Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "VERIFIED-CHAIN"

    # Deployment
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Web3 / Proof registry contract
    WEB3_PROVIDER_URL: str = "http://127.0.0.1:8545"
    CHAIN_ID: Optional[int] = None
    PROOF_CONTRACT_ADDRESS: str = ""
    CONTRACT_ABI_PATH: str = "json_abi/Contract.json"
    RELAYER_PRIVATE_KEY: str = ""

    # Transaction handling
    RECEIPT_TIMEOUT_SECONDS: float = 120.0
    RECEIPT_POLL_SECONDS: float = 1.0
    GAS_LIMIT_MULTIPLIER: float = 1.2

    # External prover (ezkl CLI)
    PROVER_BINARY: str = "ezkl"
    PROVER_LOGROWS: int = 17
    PROVER_BITS: int = 16
    PROVER_MODEL_PATH: str = "ezkl/network.onnx"
    PROVER_WORK_DIR: str = ""
    PROVER_TIMEOUT_SECONDS: float = 600.0
    PROVER_KEEP_ARTIFACTS: bool = False

    # Pipeline
    STAGE_RETRIES: int = 0
    COUNTER_INDEX_OFFSET: int = 1

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
