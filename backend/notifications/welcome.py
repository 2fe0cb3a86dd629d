"""
Welcome notification.

Sent to the member's contact address after a successful registration. It
carries the new address and the one-time password, which are not stored
anywhere else.
"""

import logging
from typing import Optional

from config import ProvisioningConfig
from directory.client import DirectoryClient
from .templates import TemplateEngine, get_template_engine

logger = logging.getLogger(__name__)


class WelcomeNotifier:
    def __init__(
        self,
        directory: DirectoryClient,
        config: ProvisioningConfig,
        engine: Optional[TemplateEngine] = None,
    ):
        self.directory = directory
        self.config = config
        self.engine = engine or get_template_engine()

    async def send(
        self,
        to: str,
        email: str,
        temp_password: str,
        contact_name: Optional[str] = None,
    ) -> None:
        """Render and send; DirectoryError and TemplateError propagate to the caller"""
        message = self.engine.render("welcome", {
            "email": email,
            "temp_password": temp_password,
            "contact_name": contact_name,
            "domain": self.config.domain,
            "organization_name": self.config.organization_name,
        })
        await self.directory.send_mail(to, message.subject, message.text, html=message.html)
        logger.info(f"Welcome notification sent for {email}")
