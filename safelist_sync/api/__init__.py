"""REST transport shared by the Partner Center and Exchange clients."""

from .client import ApiClient, ApiError

__all__ = ["ApiClient", "ApiError"]
