"""httpx-backed implementations of the outbound collaborator protocols."""

from autoflow.clients.http import HttpClient
from autoflow.clients.messaging import WhatsAppClient

__all__ = ["HttpClient", "WhatsAppClient"]
