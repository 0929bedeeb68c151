"""Email delivery module.

通过 EmailJS REST API 发送报告邮件，尽力而为（best-effort）。
EmailJS: https://www.emailjs.com/docs/rest-api/send/

未配置 EmailJS 凭据时不会真正发送，只记录一次模拟投递。
"""

import logging

import httpx
from pydantic import BaseModel

from .config import EmailConfig, Settings
from .errors import DeliveryError

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    to: str
    subject: str
    simulated: bool = False


class EmailDelivery:
    """Sends reports through EmailJS, or simulates when unconfigured."""

    def __init__(
        self,
        email_config: EmailConfig,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.email_config = email_config
        self.settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.settings.emailjs_configured

    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        """Send one email.

        Args:
            to: Recipient address.
            subject: Email subject.
            body: Message body (the template's ``{{message}}`` variable).

        Returns:
            DeliveryResult; ``simulated`` is True when EmailJS is not configured.

        Raises:
            DeliveryError: the EmailJS call failed.
        """
        if not self.configured:
            logger.warning("EmailJS not configured, simulating delivery to %s", to)
            return DeliveryResult(to=to, subject=subject, simulated=True)

        payload: dict = {
            "service_id": self.settings.emailjs_service_id,
            "template_id": self.settings.emailjs_template_id,
            "user_id": self.settings.emailjs_public_key,
            "template_params": {
                "to_email": to,
                "subject": subject,
                "message": body,
            },
        }
        if self.settings.emailjs_private_key:
            payload["accessToken"] = self.settings.emailjs_private_key

        try:
            async with httpx.AsyncClient(
                timeout=self.email_config.timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.email_config.api_url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("EmailJS rejected the send: %s %s", e.response.status_code, e.response.text)
            raise DeliveryError(f"EmailJS error {e.response.status_code}: {e.response.text}") from e
        except httpx.HTTPError as e:
            logger.error("EmailJS request failed: %s", e)
            raise DeliveryError(f"EmailJS request failed: {e}") from e

        logger.info("Email sent to %s: %s", to, subject)
        return DeliveryResult(to=to, subject=subject)
