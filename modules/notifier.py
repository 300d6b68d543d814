"""
Notification module for cl-vitality

Two sinks deliver alerts to the node operator:
- MailSender: SMTP with STARTTLS
- TelegramSender: Telegram Bot API, one message per recipient

Notifier fans a (subject, body) pair out to every sink that has a
complete set of credentials in the config snapshot. Dispatch failures
are logged and reported back to the caller but never raised: a broken
mail server must not turn a health check into a failed one.
"""

import smtplib
import ssl
from email.message import EmailMessage
from typing import Dict, Optional, Sequence

import requests

from .config import ConfigSnapshot


SMTP_TIMEOUT_SECONDS = 60
TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
TELEGRAM_TIMEOUT_SECONDS = 30
TELEGRAM_MAX_MESSAGE_LEN = 4000


class NotificationError(Exception):
    """Raised by a sink when a message could not be delivered."""


class MailSender:
    """Sends plain text or HTML mail through an authenticated SMTP relay."""

    def __init__(self, plugin):
        self.plugin = plugin

    def send_mail(self, cfg: ConfigSnapshot, subject: str, body: str, is_html: bool = False) -> None:
        try:
            message = EmailMessage()
            message["From"] = cfg.email_from
            message["To"] = cfg.email_to
            message["Subject"] = subject.strip()
            message.set_content(body, subtype="html" if is_html else "plain")

            context = ssl.create_default_context()
            with smtplib.SMTP(cfg.smtp_server, cfg.smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as server:
                server.starttls(context=context)
                server.login(cfg.smtp_username, cfg.smtp_password)
                server.send_message(message)
        # ValueError covers malformed headers and non-ASCII credentials
        except (smtplib.SMTPException, OSError, ValueError) as e:
            raise NotificationError(f"Failed to send email: {e}") from e

        self.plugin.log(f"notify: Sent email with subject: `{subject.strip()}` to: `{cfg.email_to}`")


class TelegramSender:
    """
    Sends messages through the Telegram Bot API.

    Delivery is best-effort per recipient: one failing chat does not stop
    the others. NotificationError is raised only if no recipient got the
    message.
    """

    def __init__(self, plugin, session=None):
        self.plugin = plugin
        self.session = session or requests.Session()

    def send_chat_message(self, cfg: ConfigSnapshot, subject: str, body: str) -> None:
        message = f"{subject}\n{body}"
        if len(message) > TELEGRAM_MAX_MESSAGE_LEN:
            message = message[:TELEGRAM_MAX_MESSAGE_LEN]

        url = TELEGRAM_API_URL.format(token=cfg.telegram_token)
        failures = []
        for username in cfg.telegram_usernames:
            try:
                response = self.session.post(
                    url,
                    json={"chat_id": username, "text": message},
                    timeout=TELEGRAM_TIMEOUT_SECONDS,
                )
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                self.plugin.log(f"notify: Error sending telegram to {username}: {e}", level='warn')
                failures.append(username)

        if failures and len(failures) == len(cfg.telegram_usernames):
            raise NotificationError(f"Failed to send telegram to: {', '.join(failures)}")


class Notifier:
    """
    Dispatches one alert through every configured sink.

    Usage:
        notifier = Notifier(plugin)
        results = notifier.notify(cfg, "Channel check report", body)
        # results == {"mail": "success", "telegram": "error: ..."}
    """

    def __init__(self, plugin, mail: Optional[MailSender] = None,
                 telegram: Optional[TelegramSender] = None):
        self.plugin = plugin
        self.mail = mail or MailSender(plugin)
        self.telegram = telegram or TelegramSender(plugin)

    def active_sinks(self, cfg: ConfigSnapshot) -> Sequence[str]:
        sinks = []
        if cfg.send_mail:
            sinks.append("mail")
        if cfg.send_telegram:
            sinks.append("telegram")
        return sinks

    def notify(self, cfg: ConfigSnapshot, subject: str, body: str,
               is_html: bool = False) -> Dict[str, str]:
        """
        Send subject/body through mail and telegram as configured.

        Returns:
            Dict sink -> "success" or "error: <reason>" for each sink tried
        """
        results: Dict[str, str] = {}

        if cfg.send_mail:
            try:
                self.mail.send_mail(cfg, subject, body, is_html)
                results["mail"] = "success"
            except Exception as e:
                self.plugin.log(f"notify: Error sending mail: {e}", level='warn')
                results["mail"] = f"error: {e}"

        if cfg.send_telegram:
            try:
                self.telegram.send_chat_message(cfg, subject, body)
                results["telegram"] = "success"
            except Exception as e:
                self.plugin.log(f"notify: Error sending telegram: {e}", level='warn')
                results["telegram"] = f"error: {e}"

        if not results:
            self.plugin.log(
                f"notify: No notification sink configured, dropping alert: {subject.strip()}",
                level='debug'
            )
        return results
