"""Babylon Fin billing API: Asaas subscriptions, webhooks and license state."""

__version__ = "0.1.0"
