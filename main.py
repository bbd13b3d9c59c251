#!/usr/bin/env python3
# main.py
"""
Главная точка входа Fulfillment Service.

Режимы:
    serve   - HTTP сервис (по умолчанию)
    check   - проверить подключения к PostgreSQL, Redis и RabbitMQ и выйти
"""

from __future__ import annotations

import asyncio
import signal
import sys

from fulfillment.config import settings
from fulfillment.common.logger import setup_logging, log_info, log_error
from fulfillment.common.constants import TypeMsg
from fulfillment.infra.database import init_db, close_db
from fulfillment.infra.redis_client import init_redis, close_redis
from fulfillment.infra.event_bus import init_event_bus, close_event_bus

MODES = ("serve", "check")

_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> None:
    """Настраивает обработчики SIGINT и SIGTERM для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def check_infrastructure() -> bool:
    """Подключается ко всей инфраструктуре и проверяет её здоровье."""
    await log_info("Проверка инфраструктуры...", type_msg=TypeMsg.INFO)
    try:
        db = await init_db()
        redis = await init_redis()
        event_bus = await init_event_bus()

        results = {
            "postgres": await db.health_check(),
            "redis": await redis.health_check(),
            "rabbitmq": await event_bus.health_check(),
        }
        for name, ok in results.items():
            await log_info(f"{name}: {'ok' if ok else 'unavailable'}", type_msg=TypeMsg.INFO)
        return all(results.values())
    finally:
        await close_event_bus()
        await close_redis()
        await close_db()


async def run_fulfillment_service() -> None:
    """Запускает HTTP сервер. Инфраструктура поднимается в lifespan приложения."""
    import uvicorn

    await log_info(
        f"Запуск Fulfillment Service на порту {settings.deployment.FULFILLMENT_SERVICE_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "fulfillment.services.fulfillment_service.app:app",
        host="0.0.0.0",
        port=settings.deployment.FULFILLMENT_SERVICE_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)

    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(_shutdown_event.wait()) if _shutdown_event else None
    waiters = {serve_task} | ({stop_task} if stop_task else set())

    await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    if not serve_task.done():
        await log_info("Fulfillment Service: graceful shutdown", type_msg=TypeMsg.DEBUG)
        server.should_exit = True
        await serve_task
    if stop_task and not stop_task.done():
        stop_task.cancel()


async def main(mode: str = "serve") -> int:
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} ({settings.system.ENVIRONMENT}) - режим '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "check":
            healthy = await check_infrastructure()
            return 0 if healthy else 1
        await run_fulfillment_service()
        return 0
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
        raise
    finally:
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    print("""
Использование:
    python main.py [serve|check]

    serve  - Fulfillment Service (HTTP API)
    check  - проверка подключений к инфраструктуре
    """)


if __name__ == "__main__":
    mode = "serve"

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        if arg not in MODES:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)
        mode = arg

    try:
        sys.exit(asyncio.run(main(mode)))
    except KeyboardInterrupt:
        pass
