from .views import checkout_bp

__all__ = ["checkout_bp"]
