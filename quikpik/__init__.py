"""Quikpik order-pricing and split-settlement service."""

__version__ = "0.1.0"
