"""
Envoi d'e-mails transactionnels via SMTP (ex: smtp.sendgrid.net).
- Port 465: SMTP_SSL; sinon STARTTLS si le serveur le propose.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from commerce.config import SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, EMAIL_FROM

logger = logging.getLogger(__name__)


class SmtpMailer:
    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: str = SMTP_USER,
        password: str = SMTP_PASS,
        sender: str = EMAIL_FROM,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def build_message(self, to: str, subject: str, html: str, text: Optional[str] = None) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text or "Votre client mail ne supporte pas le HTML.")
        msg.add_alternative(html, subtype="html")
        return msg

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        if not self.host:
            raise RuntimeError("SMTP_HOST manquant")
        msg = self.build_message(to, subject, html, text)
        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            server.ehlo()
            if self.port != 465 and server.has_extn("starttls"):
                server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.info("mailer.send to=%s subject=%s", to, subject)
