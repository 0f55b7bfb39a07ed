# x402test/core/config.py
from typing import Literal, Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402test"
    SERVER_PORT: int = 4402

    # Ledger network
    X402_NETWORK: str = "solana-localnet"
    X402_RPC_URL: AnyHttpUrl = "http://localhost:8899"
    X402_COMMITMENT: str = "confirmed"

    # Payment terms quoted in 402 challenges
    X402_SCHEME: str = "exact"
    X402_PAY_TO_ADDRESS: Optional[str] = None
    X402_USDC_MINT: Optional[str] = None
    X402_TOKEN_DECIMALS: int = 6
    X402_MAX_TIMEOUT_SECONDS: int = 60

    # Replay protection
    X402_REPLAY_FILE: str = ".x402test-signatures.json"

    # Timeouts (seconds)
    X402_HTTP_TIMEOUT_SECONDS: float = 30.0
    X402_CONFIRM_TIMEOUT_SECONDS: float = 60.0

    X402_EXPLORER: Literal["solana-explorer", "solscan"] = "solana-explorer"

    # Audit trail
    X402_AUDIT_ENABLED: bool = False
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
