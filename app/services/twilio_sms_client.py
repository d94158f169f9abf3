import base64
import json
from typing import Any
from urllib import error, parse, request


class TwilioSmsError(Exception):
    pass


class TwilioSmsClient:
    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout_seconds: float = 10.0,
        api_base_url: str = "https://api.twilio.com/2010-04-01",
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds
        self.api_base_url = api_base_url.rstrip("/")

    def send_sms(self, *, to: str, body: str) -> str:
        to_number = to.strip()
        if not to_number.startswith("+"):
            raise TwilioSmsError("Phone number must be in E.164 format (e.g., +1234567890).")

        target = (
            f"{self.api_base_url}/Accounts/{parse.quote(self.account_sid, safe='')}/Messages.json"
        )
        form_body = parse.urlencode(
            {"To": to_number, "From": self.from_number, "Body": body},
        ).encode("utf-8")
        basic_auth = base64.b64encode(
            f"{self.account_sid}:{self.auth_token}".encode("utf-8"),
        ).decode("ascii")
        req = request.Request(
            target,
            data=form_body,
            method="POST",
            headers={
                "Authorization": f"Basic {basic_auth}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise TwilioSmsError("Twilio API request timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            raise TwilioSmsError(
                f"Twilio API HTTP {exc.code}: {body_text or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise TwilioSmsError(f"Twilio API connection error: {exc.reason}") from exc

        try:
            payload: Any = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise TwilioSmsError("Twilio API returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise TwilioSmsError("Twilio API response is not a JSON object.")
        message_sid = payload.get("sid")
        if not isinstance(message_sid, str) or not message_sid.strip():
            raise TwilioSmsError("Twilio API response missing message sid.")
        return message_sid
