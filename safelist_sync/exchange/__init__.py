"""Exchange Online admin API access."""

from .client import ExchangeAdminClient, is_not_found
from .session import ExchangeSessionFactory

__all__ = ["ExchangeAdminClient", "ExchangeSessionFactory", "is_not_found"]
