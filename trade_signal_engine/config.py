from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

JUPITER_V6_PROGRAM_ID = "JUP6LkbZbjS2jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"


def normalize_asset(asset_id: str) -> str:
    # Mints are compared case-insensitively across the detector
    return (asset_id or "").strip().lower()


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="TSE_", extra="allow")

    # Solana
    sol_rpc_url: str = "https://api.mainnet-beta.solana.com"
    sol_ws_url: str | None = None  # derived from sol_rpc_url when unset
    aggregator_program_id: str = JUPITER_V6_PROGRAM_ID
    stream_commitment: str = "processed"
    fetch_commitment: str = "confirmed"

    # Health / reconnection
    health_check_interval_sec: float = 30.0
    max_inactivity_sec: float = 120.0
    reconnect_backoff_sec: float = 2.0

    # Classification
    processed_signatures_cap: int = 1000
    pool_vault_threshold: float = 100_000.0  # token units, no decimal normalization
    token_dust_threshold: float = 0.01
    native_dust_lamports: int = 1_000_000  # 0.001 SOL
    min_native_amount: float = 0.0001  # SOL

    # Recording of emitted trades (optional consumer)
    database_url: str = "sqlite+pysqlite:///tse.db"
    record_trades: bool = False

    # Config files
    assets_config: str = "config/assets.yaml"

    # Logging
    log_level: str = "INFO"

    @field_validator("sol_ws_url", mode="before")
    @classmethod
    def _empty_str_to_none(cls, v):
        if v == "":
            return None
        return v

    def ws_url(self) -> str:
        if self.sol_ws_url:
            return self.sol_ws_url
        return self.sol_rpc_url.replace("https://", "wss://").replace("http://", "ws://")

    def assets_to_watch(self) -> list[str]:
        import yaml

        path = Path(self.assets_config)
        if not path.exists():
            return []
        data = yaml.safe_load(path.read_text()) or {}
        out: list[str] = []
        for item in data.get("assets", []):
            mint = item.get("mint") if isinstance(item, dict) else item
            norm = normalize_asset(str(mint or ""))
            if norm and norm not in out:
                out.append(norm)
        return out
