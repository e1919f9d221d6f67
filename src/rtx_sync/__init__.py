"""rtx-sync - declarative configuration reconciliation for Yamaha RTX routers."""

__version__ = "0.1.0"
