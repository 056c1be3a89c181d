from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SANDBOX_BASE_URL = "https://gw-fatoora.zatca.gov.sa/e-invoicing/developer-portal"
SIMULATION_BASE_URL = "https://gw-fatoora.zatca.gov.sa/e-invoicing/simulation"
PRODUCTION_BASE_URL = "https://gw-fatoora.zatca.gov.sa/e-invoicing/core"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="FATOORA_", extra="ignore")

    # Canonical form used for the invoice digest. Inclusive C14N 1.0 unless
    # the authority's test vectors say otherwise.
    EXCLUSIVE_C14N: bool = False

    # What to do when cbc:ProfileID or cac:AccountingSupplierParty is absent
    MISSING_ANCHOR_POLICY: Literal["skip", "raise"] = "skip"

    # Fatoora portal
    API_BASE_URL: str = SANDBOX_BASE_URL
    API_TIMEOUT: float = 30.0

    # Signed invoice storage
    FILE_STORAGE_PATH: str = "output"


settings = Settings()
