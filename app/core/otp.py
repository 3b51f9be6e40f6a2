import hashlib
import hmac
import logging
import secrets
import smtplib
from email.message import EmailMessage
from email.utils import formatdate

from app.core.config import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

OTP_LENGTH = 6
OTP_SUBJECT = "Tu código de seguridad (MFA)"


class OTPDeliveryError(Exception):
    """Raised when the OTP e-mail could not be handed to the SMTP server."""


def generate_otp() -> str:
    """Uniform over 000000-999999."""
    return str(secrets.randbelow(10 ** OTP_LENGTH)).zfill(OTP_LENGTH)


def hash_otp(otp: str) -> str:
    return hashlib.sha256(otp.encode()).hexdigest()


def otp_matches(otp: str, otp_hash: str) -> bool:
    return hmac.compare_digest(hash_otp(otp), otp_hash)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _build_message(to_email: str, otp: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = OTP_SUBJECT
    msg["Date"] = formatdate(localtime=True)
    msg.set_content(
        f"Tu código MFA es: {otp}\n\n"
        f"El código expira en {settings.OTP_EXPIRY_MINUTES} minutos.\n"
        "Si no intentaste iniciar sesión, ignora este correo."
    )
    return msg


class SMTPMailer:
    """Sends OTP codes through the configured SMTP account."""

    def __init__(
        self,
        host: str = None,
        port: int = None,
        user: str = None,
        password: str = None,
        use_tls: bool = None,
        timeout: float = None,
    ):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = user if user is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = timeout or settings.SMTP_TIMEOUT_SECONDS

    def send_otp(self, to_email: str, otp: str) -> None:
        msg = _build_message(to_email, otp)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user:
                    server.login(self.user, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP error sending OTP to %s: %s", to_email, str(e))
            raise OTPDeliveryError(str(e)) from e

        logger.info("OTP e-mail sent to %s", to_email)

    def ping(self) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.noop()
