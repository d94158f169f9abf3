import json
from datetime import datetime
from typing import Any
from urllib import error, parse, request
from uuid import uuid4

from app.services.counselor_credentials import CounselorCredentialProvider, CredentialError


class GoogleCalendarError(Exception):
    pass


class GoogleCalendarClient:
    def __init__(
        self,
        *,
        counselor_id: str,
        credentials: CounselorCredentialProvider,
        calendar_id: str = "primary",
        timeout_seconds: float = 10.0,
        create_meet_link: bool = False,
        api_base_url: str = "https://www.googleapis.com/calendar/v3",
    ) -> None:
        self.counselor_id = counselor_id
        self.credentials = credentials
        self.calendar_id = calendar_id
        self.timeout_seconds = timeout_seconds
        self.create_meet_link = create_meet_link
        self.api_base_url = api_base_url.rstrip("/")

    def list_events(self, *, time_min: datetime, time_max: datetime) -> list[dict[str, Any]]:
        events_path = f"/calendars/{parse.quote(self.calendar_id, safe='')}/events"
        base_params: list[tuple[str, str]] = [
            ("timeMin", time_min.isoformat()),
            ("timeMax", time_max.isoformat()),
            ("singleEvents", "true"),
            ("orderBy", "startTime"),
        ]
        events: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            query_params = list(base_params)
            if page_token:
                query_params.append(("pageToken", page_token))
            response_payload = self._request_json(
                "GET",
                f"{events_path}?{parse.urlencode(query_params)}",
            )
            items = response_payload.get("items")
            if isinstance(items, list):
                events.extend(item for item in items if isinstance(item, dict))
            next_token = response_payload.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token.strip():
                return events
            page_token = next_token

    def create_event(self, event_payload: dict[str, Any]) -> dict[str, str | None]:
        payload = dict(event_payload)
        endpoint_path = f"/calendars/{parse.quote(self.calendar_id, safe='')}/events"
        query_params: list[tuple[str, str]] = []
        if self.create_meet_link:
            payload["conferenceData"] = {
                "createRequest": {
                    "requestId": f"booking-{uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            }
            query_params.append(("conferenceDataVersion", "1"))
        if payload.get("attendees"):
            query_params.append(("sendUpdates", "all"))
        if query_params:
            endpoint_path = f"{endpoint_path}?{parse.urlencode(query_params)}"

        response_payload = self._request_json("POST", endpoint_path, payload=payload)
        event_id = response_payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise GoogleCalendarError("Google Calendar create event response missing id.")
        return {
            "event_id": event_id,
            "google_meet_link": self._extract_google_meet_link(response_payload),
        }

    def _extract_google_meet_link(self, payload: dict[str, Any]) -> str | None:
        hangout_link = payload.get("hangoutLink")
        if isinstance(hangout_link, str) and hangout_link.strip():
            return hangout_link.strip()
        conference_data = payload.get("conferenceData")
        if not isinstance(conference_data, dict):
            return None
        entry_points = conference_data.get("entryPoints")
        if not isinstance(entry_points, list):
            return None
        for raw_entry in entry_points:
            if not isinstance(raw_entry, dict):
                continue
            uri = raw_entry.get("uri")
            if isinstance(uri, str) and uri.strip():
                return uri.strip()
        return None

    def _request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        allow_refresh: bool = True,
    ) -> dict[str, Any]:
        try:
            access_token = self.credentials.get_access_token(self.counselor_id)
        except CredentialError as exc:
            raise GoogleCalendarError(str(exc)) from exc

        target = f"{self.api_base_url}{path}"
        raw_payload: bytes | None = None
        if payload is not None:
            raw_payload = json.dumps(payload).encode("utf-8")

        req = request.Request(
            target,
            data=raw_payload,
            method=method,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise GoogleCalendarError("Google Calendar API request timed out.") from exc
        except error.HTTPError as exc:
            if exc.code == 401 and allow_refresh and self.credentials.can_refresh(self.counselor_id):
                self.credentials.invalidate(self.counselor_id)
                return self._request_json(method, path, payload, allow_refresh=False)
            body = exc.read().decode("utf-8", errors="ignore")
            raise GoogleCalendarError(
                f"Google Calendar API HTTP {exc.code}: {body or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise GoogleCalendarError(
                f"Google Calendar API connection error: {exc.reason}",
            ) from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise GoogleCalendarError("Google Calendar API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise GoogleCalendarError("Google Calendar API response is not a JSON object.")
        return parsed_body
