#!/usr/bin/env python3
"""
Entrypoint для Fulfillment Service.

Запуск:
    python entrypoints/entrypoint_fulfillment_service.py

Порт по умолчанию: 8092
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from fulfillment.config import settings


def main() -> None:
    """Запустить Fulfillment Service."""
    uvicorn.run(
        "fulfillment.services.fulfillment_service.app:app",
        host="0.0.0.0",
        port=settings.deployment.FULFILLMENT_SERVICE_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
