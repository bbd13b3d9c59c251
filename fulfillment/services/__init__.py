# fulfillment/services/__init__.py
"""
Сервисы приложения. Каждый сервис - FastAPI-приложение поверх ядра fulfillment.core.
"""
