from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Dict, Any
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'fincas_user'
    POSTGRES_PASSWORD: str = 'fincas_pass'
    POSTGRES_DB: str = 'fincas_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432

    # Datos fiscales de la empresa (exportación AEAT)
    COMPANY_NIF: str = 'B12345678'
    COMPANY_NAME: str = 'Tu Empresa SL'
    COMPANY_ADDRESS: str = 'Calle Ejemplo 123'
    COMPANY_POSTAL_CODE: str = '28001'
    COMPANY_CITY: str = 'Madrid'
    COMPANY_PROVINCE: str = 'Madrid'
    COMPANY_COUNTRY: str = 'España'

    # Reparto por defecto de gastos no asociados a un inmueble.
    # JSON: [{"owner_id": 1, "owner_name": "...", "percentage": "33.34"}, ...]
    DEFAULT_OWNERSHIP_SHARES: List[Dict[str, Any]] = []

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def async_database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("COMPANY_NIF", mode="before")
    @classmethod
    def normalize_nif(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

settings = Settings()
