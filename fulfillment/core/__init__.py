# fulfillment/core/__init__.py
"""
Доменный слой: жизненный цикл заказов, трекинг, назначения, платежи, уведомления.
"""
