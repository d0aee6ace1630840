from functools import lru_cache
from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    gateway_base_url: str = "https://api.z-api.io"
    gateway_instance: str = ""
    gateway_token: str = ""
    gateway_client_token: Optional[str] = None
    gateway_timeout_seconds: float = 30.0

    admin_phone: Optional[str] = None
    admin_api_token: Optional[str] = None

    unit_sources: Dict[str, str] = {}
    workbook_timeout_seconds: float = 30.0

    inactivity_ms: int = 15 * 60 * 1000

    order_site_url: str = "https://cantina.example.com/pedido"
    catalogue_url: str = "https://cantina.example.com/catalogo"

    log_level: str = "INFO"
    port: int = 10000

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def inactivity_seconds(self) -> float:
        return max(self.inactivity_ms, 0) / 1000.0

    def source_for_unit(self, unit_code: Optional[str]) -> Optional[str]:
        """Workbook URL configured for a unit code (case-insensitive)."""
        if not unit_code:
            return None
        wanted = unit_code.strip().upper()
        for code, url in self.unit_sources.items():
            if code.strip().upper() == wanted and url:
                return url
        return None


@lru_cache
def get_settings() -> Settings:
    return Settings()
