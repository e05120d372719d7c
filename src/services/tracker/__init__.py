# src/services/tracker/__init__.py
"""
Geo Tracker — сервис live-tracking пользователей.

Обеспечивает:
- WebSocket соединения для клиентов карты
- Приём, фильтрацию и сглаживание геолокации
- Рассылку позиций и присутствия всем зрителям
"""
