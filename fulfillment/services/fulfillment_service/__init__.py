# fulfillment/services/fulfillment_service/__init__.py
"""HTTP сервис fulfillment."""
