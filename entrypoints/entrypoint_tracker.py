#!/usr/bin/env python3
"""
Entrypoint для Geo Tracker.

Запуск:
    python entrypoints/entrypoint_tracker.py

Порт по умолчанию: 8090
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить Geo Tracker."""
    uvicorn.run(
        "src.services.tracker.app:app",
        host=settings.deployment.TRACKER_HOST,
        port=settings.deployment.TRACKER_PORT,
        workers=settings.deployment.TRACKER_INSTANCES_COUNT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
