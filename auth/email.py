"""
auth/email.py -- Delivery of verification and password-reset links.

Routes depend on the EmailSender protocol, not a concrete implementation:
  LogEmailSender  -- writes the link to the log (development, tests).
  HttpEmailSender -- POSTs a JSON message to a transactional email API.

Senders return False on delivery failure instead of raising; the caller
decides whether a failed send should fail the request.

Links point at the SPA (Settings.client_url), which calls back into
GET /verify-email/{token} or POST /reset-password/{token}.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import requests

logger = logging.getLogger("authgate.auth.email")


class EmailSender(Protocol):
    def send_verification_email(self, email: str, username: Optional[str], token: str) -> bool: ...

    def send_password_reset_email(self, email: str, username: Optional[str], token: str) -> bool: ...


def verification_link(client_url: str, token: str) -> str:
    return f"{client_url.rstrip('/')}/verify-email/{token}"


def reset_link(client_url: str, token: str) -> str:
    return f"{client_url.rstrip('/')}/reset-password/{token}"


class LogEmailSender:
    """Logs links instead of sending mail. Never fails."""

    def __init__(self, client_url: str) -> None:
        self._client_url = client_url

    def send_verification_email(self, email: str, username: Optional[str], token: str) -> bool:
        logger.info("Verification link for %s: %s", email, verification_link(self._client_url, token))
        return True

    def send_password_reset_email(self, email: str, username: Optional[str], token: str) -> bool:
        logger.info("Password reset link for %s: %s", email, reset_link(self._client_url, token))
        return True


class HttpEmailSender:
    """Sends mail through an HTTP email API (JSON body, bearer token)."""

    def __init__(
        self,
        api_url: str,
        api_token: str,
        from_address: str,
        client_url: str,
        timeout: float = 10.0,
    ) -> None:
        self._api_url = api_url
        self._from = from_address
        self._client_url = client_url
        self._timeout = timeout
        self._session = requests.Session()
        self._session.max_redirects = 3
        if api_token:
            self._session.headers["Authorization"] = f"Bearer {api_token}"

    def _send(self, to_email: str, to_name: Optional[str], subject: str, text_body: str) -> bool:
        payload = {
            "from": {"address": self._from},
            "to": [{"address": to_email, "name": to_name or to_email}],
            "subject": subject,
            "textbody": text_body,
        }
        try:
            resp = self._session.post(self._api_url, json=payload, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Email delivery to %s failed: %s", to_email, e)
            return False
        return True

    def send_verification_email(self, email: str, username: Optional[str], token: str) -> bool:
        link = verification_link(self._client_url, token)
        body = (
            f"Hello {username or email},\n\n"
            f"Confirm your email address by opening this link:\n{link}\n\n"
            "If you did not create an account, ignore this message."
        )
        return self._send(email, username, "Verify your email address", body)

    def send_password_reset_email(self, email: str, username: Optional[str], token: str) -> bool:
        link = reset_link(self._client_url, token)
        body = (
            f"Hello {username or email},\n\n"
            f"Reset your password with this link:\n{link}\n\n"
            "If you did not request a reset, ignore this message."
        )
        return self._send(email, username, "Reset your password", body)


def build_email_sender(settings) -> EmailSender:
    if settings.email_api_url:
        return HttpEmailSender(
            api_url=settings.email_api_url,
            api_token=settings.email_api_token,
            from_address=settings.email_from,
            client_url=settings.client_url,
            timeout=settings.email_timeout_seconds,
        )
    logger.warning("EMAIL_API_URL not set -- verification and reset links will be logged, not sent")
    return LogEmailSender(settings.client_url)
