import pytest

from app.core.config import Settings, get_settings
from app.services.conversation_service import get_session_lock_registry
from app.services.conversation_session_store import clear_conversation_session_store_cache
from app.services.counselor_credentials import clear_credential_provider_cache
from app.services.slot_reservation_store import clear_slot_reservation_store_cache
from booking_fakes import FakeCalendar, build_settings


@pytest.fixture(autouse=True)
def reset_caches() -> None:
    get_settings.cache_clear()
    clear_conversation_session_store_cache()
    clear_credential_provider_cache()
    clear_slot_reservation_store_cache()
    get_session_lock_registry.cache_clear()
    yield
    get_settings.cache_clear()
    clear_conversation_session_store_cache()
    clear_credential_provider_cache()
    clear_slot_reservation_store_cache()
    get_session_lock_registry.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def fake_calendar() -> FakeCalendar:
    return FakeCalendar()
