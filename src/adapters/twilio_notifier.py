"""Twilio Studio notification adapter.

Warnings are delivered by starting an execution of a Studio flow that talks
to the member over WhatsApp. The flow receives the reason and the member's
phone as parameters.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from core.errors import NotificationError

LOGGER = logging.getLogger(__name__)

STUDIO_API = "https://studio.twilio.com/v2"


class TwilioStudioNotifier:
    """Notifier adapter that triggers a Twilio Studio flow execution."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        flow_sid: str,
        from_number: str,
        timeout: float = 10,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._flow_sid = flow_sid
        self._from_number = from_number
        self._timeout = timeout

    def _endpoint(self) -> str:
        return f"{STUDIO_API}/Flows/{self._flow_sid}/Executions"

    def _authorization(self) -> str:
        credentials = f"{self._account_sid}:{self._auth_token}".encode("utf-8")
        return "Basic " + base64.b64encode(credentials).decode("ascii")

    def build_form(self, phone: str, reason: str) -> dict[str, str]:
        return {
            "To": f"whatsapp:+{phone}",
            "From": f"whatsapp:+{self._from_number}",
            "Parameters": json.dumps({"reason": reason, "member_phone": f"+{phone}"}),
        }

    async def send(self, phone: str, reason: str) -> None:
        """Start the flow for ``phone``; raise NotificationError on failure."""

        data = urllib.parse.urlencode(self.build_form(phone, reason)).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")
        request.add_header("Authorization", self._authorization())
        # Blocking call: warnings are rare and the cycle is sequential.
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise NotificationError(f"Twilio API error {e.code}: {body}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise NotificationError(f"Twilio API unreachable: {e}") from e
        LOGGER.info("Twilio flow triggered for %s (%s): %s", phone, reason, body.get("sid"))


class LoggingNotifier:
    """Fallback notifier used when Twilio is not configured."""

    async def send(self, phone: str, reason: str) -> None:
        LOGGER.info("Skipped sending warning to %s (%s): no notifier configured", phone, reason)
