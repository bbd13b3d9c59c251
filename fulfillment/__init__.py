# fulfillment/__init__.py
"""
EDMICH fulfillment: жизненный цикл заказов и бронирований,
сверка платежей, назначение исполнителей, трекинг и уведомления.
"""

__version__ = "0.3.0"
