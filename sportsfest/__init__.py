"""SportsFest registration checkout: inventory ledger, tent quotas, carts and payment confirmation."""

__version__ = "1.0.0"
