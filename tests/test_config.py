import pytest

from salesdesk.config import AgentSeed, load_settings, parse_agents


def test_parse_agents_keeps_order_and_strips():
    assert parse_agents(" Ana : 5731 ,Beto:5732") == [AgentSeed("Ana", "5731"), AgentSeed("Beto", "5732")]
    assert parse_agents("") == []


def test_parse_agents_rejects_malformed_entries():
    with pytest.raises(ValueError):
        parse_agents("Ana")
    with pytest.raises(ValueError):
        parse_agents("Ana:")


def test_load_settings_defaults(monkeypatch):
    for name in ("AGENTS", "AUDITORS", "MAX_RESULTS", "BUSINESS_PHONE", "MEMORY_ENABLED", "COUNTRY_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.max_results == 8
    assert settings.max_attempts == 3
    assert settings.country_prefix == "57"
    assert settings.loop_max_messages == 10
    assert settings.memory_enabled is True
    assert settings.agents == ()
    assert settings.admins == ()
    assert settings.catalog_path.name == "catalogo_contexto.json"


def test_load_settings_overrides(monkeypatch):
    monkeypatch.setenv("AGENTS", "Ana:5731")
    monkeypatch.setenv("AUDITORS", "5799, 5798")
    monkeypatch.setenv("BUSINESS_PHONE", "5700")
    monkeypatch.setenv("MAX_RESULTS", "3")
    monkeypatch.setenv("MEMORY_ENABLED", "0")
    monkeypatch.setenv("HIGHLIGHT_CATEGORIES", "RETAY,CLUB")
    settings = load_settings()
    assert settings.agents == (AgentSeed("Ana", "5731"),)
    assert settings.admins == ("5700", "5799", "5798")
    assert settings.max_results == 3
    assert settings.memory_enabled is False
    assert settings.highlight_categories == ("RETAY", "CLUB")


def test_invalid_numbers_fail_at_startup(monkeypatch):
    monkeypatch.setenv("MAX_RESULTS", "ocho")
    with pytest.raises(ValueError):
        load_settings()
