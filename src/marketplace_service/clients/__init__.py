"""HTTP clients for the Identity service and the mail relay."""

from marketplace_service.clients.identity_client import IdentityClient
from marketplace_service.clients.mail_client import MailClient

__all__ = ["IdentityClient", "MailClient"]
