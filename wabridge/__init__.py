"""
wabridge - WhatsApp bridge service.
"""

__version__ = "0.4.0"
__logo__ = "📱"
