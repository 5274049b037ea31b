from pydantic import field_validator
from pydantic_settings import SettingsConfigDict, BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "gt06-gateway"
    PROD: bool = False

    # Storage
    DATABASE_URL: str = "sqlite:///./gt06_data.db"
    STORE_RECORDS: bool = True

    # GPS TCP Server configuration
    GPS_TCP_HOST: str = "0.0.0.0"
    GPS_TCP_PORT: int = 5023
    GPS_TCP_ENABLED: bool = True
    CONNECTION_TIMEOUT: int = 1800  # 30 minutes idle timeout
    TIMEOUT_CHECK_INTERVAL: int = 30
    MAX_CONNECTIONS: int = 1000
    MAX_CONNECTIONS_PER_IP: int = 50

    # Framing
    MAX_FRAME_LENGTH: int = 1024  # Largest frame accepted, in bytes
    MAX_BUFFER_SIZE: int = 8192  # Per-connection accumulator ceiling
    # Inbound checksum policy: ignore, crc16 or sum16
    CHECKSUM_POLICY: str = "ignore"

    LOG_DIR: str = "./logs"

    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    @field_validator('CHECKSUM_POLICY')
    @classmethod
    def check_policy(cls, value: str) -> str:
        value = value.lower()
        if value not in ('ignore', 'crc16', 'sum16'):
            raise ValueError(f"CHECKSUM_POLICY must be ignore, crc16 or sum16, got {value}")
        return value

    @property
    def DATABASE_URI(self) -> str:
        """Backward compatibility for DATABASE_URI"""
        return self.DATABASE_URL


settings = Settings()
