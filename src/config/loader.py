# src/config/loader.py
"""
Загрузчик конфигурации трекера.
Единственный источник истины — config/config.json.
Секретные данные и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "geo_tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания."""
    TRACKER_HOST: str = "0.0.0.0"
    TRACKER_PORT: int = 8090
    TRACKER_INSTANCES_COUNT: int = 1


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/geo_tracker.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "geo_tracker"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 30

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_ENABLED: bool = True
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "tracker"
    REDIS_MAX_CONNECTIONS: int = 20
    PRESENCE_TTL: int = 86400

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class TrackingSettings(BaseModel):
    """Фильтрация, сглаживание и троттлинг записи точек."""
    MAX_ACCURACY_METERS: float = Field(default=2000.0, gt=0)
    MAX_SPEED_MPS: float = Field(default=300.0, gt=0)
    MIN_ELAPSED_SECONDS: float = Field(default=0.1, gt=0)
    HISTORY_SIZE: int = Field(default=5, ge=1)
    PERSIST_INTERVAL_SECONDS: int = Field(default=300, ge=0)
    PERSIST_DISTANCE_METERS: float = Field(default=10.0, ge=0)
    SNAPSHOT_POLICY: str = "last_hour"  # last_hour, online_users
    SNAPSHOT_WINDOW_SECONDS: int = Field(default=3600, gt=0)
    DEFAULT_USERNAME: str = "User"

    @field_validator("SNAPSHOT_POLICY")
    @classmethod
    def check_policy(cls, v: str) -> str:
        """Проверяет политику начального снимка."""
        if v not in ("last_hour", "online_users"):
            raise ValueError(f"Неизвестная политика снимка: {v}")
        return v


class TimeoutSettings(BaseModel):
    """Таймауты операций ввода-вывода (секунды)."""
    STORE_WRITE_TIMEOUT: float = 5.0
    SEND_TIMEOUT: float = 2.0
    PRESENCE_STORE_TIMEOUT: float = 2.0
    SHUTDOWN_DRAIN_TIMEOUT: float = 10.0


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """
        Создаёт объект Settings из плоского словаря config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "geo_tracker"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", False),
                LOG_LEVEL=data.get("LOG_LEVEL", "INFO"),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            deployment=DeploymentSettings(
                TRACKER_HOST=os.getenv("TRACKER_HOST", data.get("TRACKER_HOST", "0.0.0.0")),
                TRACKER_PORT=int(os.getenv("TRACKER_PORT", data.get("TRACKER_PORT", 8090))),
                TRACKER_INSTANCES_COUNT=data.get("TRACKER_INSTANCES_COUNT", 1),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "INFO"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/geo_tracker.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "geo_tracker")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 2),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 10),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 30),
            ),
            redis=RedisSettings(
                REDIS_ENABLED=data.get("REDIS_ENABLED", True),
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "tracker"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 20),
                PRESENCE_TTL=data.get("PRESENCE_TTL", 86400),
            ),
            tracking=TrackingSettings(
                MAX_ACCURACY_METERS=data.get("MAX_ACCURACY_METERS", 2000.0),
                MAX_SPEED_MPS=data.get("MAX_SPEED_MPS", 300.0),
                MIN_ELAPSED_SECONDS=data.get("MIN_ELAPSED_SECONDS", 0.1),
                HISTORY_SIZE=data.get("HISTORY_SIZE", 5),
                PERSIST_INTERVAL_SECONDS=data.get("PERSIST_INTERVAL_SECONDS", 300),
                PERSIST_DISTANCE_METERS=data.get("PERSIST_DISTANCE_METERS", 10.0),
                SNAPSHOT_POLICY=os.getenv("SNAPSHOT_POLICY", data.get("SNAPSHOT_POLICY", "last_hour")),
                SNAPSHOT_WINDOW_SECONDS=data.get("SNAPSHOT_WINDOW_SECONDS", 3600),
                DEFAULT_USERNAME=data.get("DEFAULT_USERNAME", "User"),
            ),
            timeouts=TimeoutSettings(
                STORE_WRITE_TIMEOUT=data.get("STORE_WRITE_TIMEOUT", 5.0),
                SEND_TIMEOUT=data.get("SEND_TIMEOUT", 2.0),
                PRESENCE_STORE_TIMEOUT=data.get("PRESENCE_STORE_TIMEOUT", 2.0),
                SHUTDOWN_DRAIN_TIMEOUT=data.get("SHUTDOWN_DRAIN_TIMEOUT", 10.0),
            ),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
