from gateway.models.account import Account

__all__ = ["Account"]
