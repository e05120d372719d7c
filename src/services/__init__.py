# src/services/__init__.py
"""
Сервисы приложения.

- tracker: WebSocket приём геолокации и рассылка позиций (FastAPI)
"""

__all__: list[str] = []
