"""Outbound API clients for simPRO and monday.com."""

from src.quotesync.clients.errors import (
    AuthError,
    FieldValidationError,
    IntegrationError,
    InvalidWebhookPayload,
    RateLimitError,
    RemoteError,
    TransportError,
)
from src.quotesync.clients.monday import MondayClient
from src.quotesync.clients.simpro import SimproClient

__all__ = [
    "AuthError",
    "FieldValidationError",
    "IntegrationError",
    "InvalidWebhookPayload",
    "MondayClient",
    "RateLimitError",
    "RemoteError",
    "SimproClient",
    "TransportError",
]
