import io
import json
from datetime import datetime
from urllib import error, parse
from zoneinfo import ZoneInfo

import pytest

from app.core.config import CounselorProfile
from app.services.counselor_credentials import CounselorCredentialProvider
from app.services.google_calendar_client import GoogleCalendarClient, GoogleCalendarError

KOLKATA = ZoneInfo("Asia/Kolkata")


class _MockResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._payload = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


def _http_error(status_code: int, payload: dict[str, object]) -> error.HTTPError:
    return error.HTTPError(
        url="https://www.googleapis.com/calendar/v3/calendars/primary/events",
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


def _credentials(
    *,
    access_token: str = "token",
    refresh_token: str = "",
    client_id: str = "",
    client_secret: str = "",
) -> CounselorCredentialProvider:
    return CounselorCredentialProvider(
        profiles={
            "counselor1": CounselorProfile(
                access_token=access_token,
                refresh_token=refresh_token,
            ),
        },
        client_id=client_id,
        client_secret=client_secret,
    )


def _client(credentials: CounselorCredentialProvider, **kwargs: object) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        counselor_id="counselor1",
        credentials=credentials,
        **kwargs,  # type: ignore[arg-type]
    )


def _event_payload() -> dict[str, object]:
    return {
        "summary": "Appointment",
        "start": {"dateTime": "2026-10-20T09:30:00+05:30", "timeZone": "Asia/Kolkata"},
        "end": {"dateTime": "2026-10-20T10:30:00+05:30", "timeZone": "Asia/Kolkata"},
    }


def test_google_calendar_client_refreshes_token_after_401(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[str] = []

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        target = req.full_url
        if "oauth2.googleapis.com/token" in target:
            calls.append("refresh")
            return _MockResponse({"access_token": "new-access-token", "expires_in": 3599})

        auth_header = req.headers.get("Authorization", "")
        if auth_header == "Bearer old-access-token":
            calls.append("calendar-old")
            raise _http_error(401, {"error": {"message": "Invalid Credentials"}})
        if auth_header == "Bearer new-access-token":
            calls.append("calendar-new")
            return _MockResponse({"id": "event-123"})
        raise AssertionError(f"Unexpected Authorization header: {auth_header}")

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)
    monkeypatch.setattr("app.services.counselor_credentials.request.urlopen", fake_urlopen)

    client = _client(
        _credentials(
            access_token="old-access-token",
            refresh_token="refresh-token",
            client_id="google-client-id",
            client_secret="google-client-secret",
        ),
    )
    result = client.create_event(_event_payload())

    assert result == {"event_id": "event-123", "google_meet_link": None}
    assert calls == ["calendar-old", "refresh", "calendar-new"]


def test_google_calendar_client_returns_error_when_401_and_no_refresh_config(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(401, {"error": {"message": "Invalid Credentials"}})

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)

    client = _client(_credentials(access_token="expired-token"))
    with pytest.raises(GoogleCalendarError, match="HTTP 401"):
        client.create_event(_event_payload())


def test_google_calendar_client_reports_missing_credentials_without_http_call(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise AssertionError("no request expected")

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)

    client = _client(_credentials(access_token=""))
    with pytest.raises(GoogleCalendarError, match="refresh token flow is not configured"):
        client.list_events(
            time_min=datetime(2026, 10, 20, 9, tzinfo=KOLKATA),
            time_max=datetime(2026, 10, 20, 12, tzinfo=KOLKATA),
        )


def test_google_calendar_client_lists_events_across_pages(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    requested_urls: list[str] = []

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        requested_urls.append(req.full_url)
        query = parse.parse_qs(parse.urlsplit(req.full_url).query)
        if "pageToken" not in query:
            return _MockResponse(
                {
                    "items": [{"id": "first", "start": {"dateTime": "2026-10-20T10:00:00+05:30"}}],
                    "nextPageToken": "page-2",
                },
            )
        assert query["pageToken"] == ["page-2"]
        return _MockResponse(
            {"items": [{"id": "second", "start": {"dateTime": "2026-10-20T11:00:00+05:30"}}]},
        )

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)

    client = _client(_credentials(), calendar_id="counselor1@example.com")
    events = client.list_events(
        time_min=datetime(2026, 10, 20, 9, tzinfo=KOLKATA),
        time_max=datetime(2026, 10, 20, 12, tzinfo=KOLKATA),
    )

    assert [event["id"] for event in events] == ["first", "second"]
    assert len(requested_urls) == 2
    first_query = parse.parse_qs(parse.urlsplit(requested_urls[0]).query)
    assert "/calendars/counselor1%40example.com/events" in requested_urls[0]
    assert first_query["timeMin"] == ["2026-10-20T09:00:00+05:30"]
    assert first_query["timeMax"] == ["2026-10-20T12:00:00+05:30"]
    assert first_query["singleEvents"] == ["true"]
    assert first_query["orderBy"] == ["startTime"]


def test_google_calendar_client_requests_meet_link_and_notifies_attendees(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured_url = {"value": ""}
    captured_payload: dict[str, object] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured_url["value"] = req.full_url
        body = req.data.decode("utf-8") if req.data else "{}"
        captured_payload.update(json.loads(body))
        return _MockResponse(
            {
                "id": "event-456",
                "conferenceData": {
                    "entryPoints": [{"entryPointType": "video", "uri": "https://meet.google.com/abc-defg-hij"}],
                },
            },
        )

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)

    client = _client(_credentials(), create_meet_link=True)
    payload = _event_payload()
    payload["attendees"] = [{"email": "client@example.com"}]
    result = client.create_event(payload)

    assert result == {
        "event_id": "event-456",
        "google_meet_link": "https://meet.google.com/abc-defg-hij",
    }
    assert "conferenceDataVersion=1" in captured_url["value"]
    assert "sendUpdates=all" in captured_url["value"]
    create_request = captured_payload["conferenceData"]["createRequest"]  # type: ignore[index]
    assert create_request["conferenceSolutionKey"] == {"type": "hangoutsMeet"}
    assert captured_payload["start"] == {
        "dateTime": "2026-10-20T09:30:00+05:30",
        "timeZone": "Asia/Kolkata",
    }


def test_google_calendar_client_rejects_create_response_without_id(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        return _MockResponse({"status": "confirmed"})

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)

    client = _client(_credentials())
    with pytest.raises(GoogleCalendarError, match="missing id"):
        client.create_event(_event_payload())


def test_google_calendar_client_wraps_connection_errors(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise error.URLError("connection refused")

    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake_urlopen)

    client = _client(_credentials())
    with pytest.raises(GoogleCalendarError, match="connection error"):
        client.create_event(_event_payload())
