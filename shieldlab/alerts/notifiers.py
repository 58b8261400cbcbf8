import base64
import json
import logging
import smtplib
from email.message import EmailMessage
from typing import Dict, Optional, Protocol
from urllib import request as urlrequest
from urllib.error import URLError, HTTPError
from urllib.parse import urlencode

from .. import config
from ..config import Contacts

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A single channel could not deliver a message."""


class Notifier(Protocol):
    channel: str

    def is_configured(self, contacts: Contacts) -> bool:
        ...

    def deliver(self, contacts: Contacts, text: str) -> None:
        ...


def _post(channel: str, url: str, data: bytes, headers: Dict[str, str], timeout: Optional[float]) -> str:
    req = urlrequest.Request(url, data=data, method="POST", headers=headers)
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            status = resp.status
            body = resp.read().decode("utf-8", errors="replace")
    except HTTPError as e:
        raise DeliveryError(
            f"{channel} alert failed: {e.code} {e.read().decode(errors='replace')}"
        ) from e
    except URLError as e:
        raise DeliveryError(f"{channel} alert failed: {e.reason}") from e

    if status < 200 or status >= 300:
        raise DeliveryError(f"{channel} alert failed: {status} {body}")
    return body


class EmailNotifier:
    channel = "Email"

    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        user: str = config.SMTP_USER,
        password: str = config.SMTP_PASS,
        sender: str = config.ALERT_EMAIL_FROM,
        timeout: int = 15,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.timeout = timeout

    def is_configured(self, contacts: Contacts) -> bool:
        return contacts.has_email

    def deliver(self, contacts: Contacts, text: str) -> None:
        self.send(contacts.email, text)

    def send(self, to_email: str, text: str) -> None:
        if not self.sender:
            raise DeliveryError("ALERT_EMAIL_FROM / SMTP_USER not configured")

        msg = EmailMessage()
        msg["Subject"] = "[ShieldLab Alert]"
        msg["From"] = self.sender
        msg["To"] = to_email
        msg.set_content(text)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
                client.starttls()
                if self.user:
                    client.login(self.user, self.password)
                client.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery to {to_email} failed: {e}") from e

        logger.info("Email alert sent to %s", to_email)


class SmsNotifier:
    """Twilio Messages API."""

    channel = "Sms"

    def __init__(
        self,
        account_sid: str = config.TWILIO_ACCOUNT_SID,
        auth_token: str = config.TWILIO_AUTH_TOKEN,
        from_number: str = config.TWILIO_FROM_NUMBER,
        api_base: str = "https://api.twilio.com",
        timeout: Optional[float] = 10,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def is_configured(self, contacts: Contacts) -> bool:
        return contacts.has_phone

    def deliver(self, contacts: Contacts, text: str) -> None:
        self.send(contacts.phone_number, text)

    def send(self, to_number: str, text: str) -> None:
        if not (self.account_sid and self.auth_token and self.from_number):
            raise DeliveryError("TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN / TWILIO_FROM_NUMBER not configured")

        url = f"{self.api_base}/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        creds = base64.b64encode(f"{self.account_sid}:{self.auth_token}".encode()).decode("ascii")
        data = urlencode({"To": to_number, "From": self.from_number, "Body": text}).encode("utf-8")

        _post(
            self.channel,
            url,
            data,
            {
                "Authorization": f"Basic {creds}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            self.timeout,
        )
        logger.info("SMS alert sent to %s", to_number)


class TelegramNotifier:
    channel = "Telegram"

    def __init__(self, api_base: str = "https://api.telegram.org", timeout: Optional[float] = 10) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def is_configured(self, contacts: Contacts) -> bool:
        return contacts.has_telegram

    def deliver(self, contacts: Contacts, text: str) -> None:
        self.send(contacts.telegram_bot_token, contacts.telegram_chat_id, text)

    def send(self, bot_token: str, chat_id: str, text: str) -> None:
        url = f"{self.api_base}/bot{bot_token}/sendMessage"
        body_bytes = json.dumps({"chat_id": chat_id, "text": text}, ensure_ascii=False).encode("utf-8")

        _post(self.channel, url, body_bytes, {"Content-Type": "application/json"}, self.timeout)
        logger.info("Telegram alert sent successfully.")


def default_notifiers():
    return [EmailNotifier(), SmsNotifier(), TelegramNotifier()]
