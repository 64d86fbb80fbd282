from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # CPMM fee rates, applied to the money leg of pool trades
    CPMM_LIQUIDITY_FEE: float = 0.0
    CPMM_PLATFORM_FEE: float = 0.0
    CPMM_CREATOR_FEE: float = 0.0

    # DPM (legacy) fees, charged on profit only
    DPM_PLATFORM_FEE: float = 0.01
    DPM_CREATOR_FEE: float = 0.04

    # Loans: fraction of net invested value advanced per day
    LOAN_DAILY_RATE: float = 0.02

    # Compute-and-commit attempts before giving up on a contended contract
    MAX_COMMIT_RETRIES: int = 5

    # App
    APP_NAME: str = "Prediction Market AMM"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False  # Safe default for production; set DEBUG=True in .env for local dev


settings = Settings()
