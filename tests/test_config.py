import pytest
from datetime import datetime, timezone
from pydantic import ValidationError
from capacity_sync.models.config import SessionState, SetupConfig, SyncSettings


def test_sync_settings_defaults():
    """Testa os valores padrão de debounce, sincronização e cache"""
    settings = SyncSettings()

    assert settings.debounce_seconds == 0.5
    assert settings.sync_interval_seconds == 300
    assert settings.sprint_cache_ttl_seconds == 300
    assert settings.team_cache_ttl_seconds == 120
    assert settings.company_cache_ttl_seconds == 60
    assert settings.max_cache_entries == 1000


@pytest.mark.parametrize("field", [
    "debounce_seconds",
    "sync_interval_seconds",
    "team_cache_ttl_seconds",
    "max_cache_entries",
])
def test_sync_settings_must_be_positive(field):
    with pytest.raises(ValidationError):
        SyncSettings(**{field: 0})


def test_setup_config():
    """Testa a configuração principal carregada do setup.json"""
    setup = SetupConfig(
        data_file="data/escala.json",
        default_team_id=1,
        sync={"debounce_seconds": 1.0},
    )

    assert setup.session_file == "output/session.json"
    assert setup.output_dir == "output"
    assert setup.sync.debounce_seconds == 1.0
    assert setup.sync.sync_interval_seconds == 300


def test_setup_config_requires_data_file():
    with pytest.raises(ValidationError):
        SetupConfig()


def test_session_state_defaults():
    state = SessionState()

    assert state.selected_team_id is None
    assert state.active_tab_id == "overview"
    assert state.last_sync_timestamp is None


def test_session_state_parses_timestamp():
    """Testa a conversão do timestamp ISO 8601"""
    state = SessionState(last_sync_timestamp="2024-01-14T09:00:00Z")

    assert state.last_sync_timestamp == datetime(2024, 1, 14, 9, 0, tzinfo=timezone.utc)


def test_session_state_invalid_timestamp():
    with pytest.raises(ValidationError):
        SessionState(last_sync_timestamp="14/01/2024")
