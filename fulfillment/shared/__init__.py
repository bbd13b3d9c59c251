# fulfillment/shared/__init__.py
"""
Общие модели, разделяемые ядром и HTTP-слоем.
"""
