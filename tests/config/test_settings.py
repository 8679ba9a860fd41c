import json
from pathlib import Path

import pytest

from backend.migrations.polls.migration_0001_initial import SELECTION_CAP
from config import CONFIG_ROOT, load_config, load_config_with_sources
from veiledcasts.config import get_settings, load_settings, reset_settings
from veiledcasts.ledger.addresses import AddressDeriver
from veiledcasts.nominations import SelectionLedger
from veiledcasts.runtime import ConfigurationError, build_ledger


def _read_json(path: Path) -> dict:
    with path.open('r', encoding='utf-8') as handle:
        return json.load(handle)


def test_defaults_follow_voting_json(monkeypatch):
    monkeypatch.delenv('VEILEDCASTS_NETWORK', raising=False)
    monkeypatch.delenv('REVEAL_TIMEOUT', raising=False)
    baseline = _read_json(CONFIG_ROOT / 'voting.json')
    settings = load_settings()

    assert settings.promotion_count == baseline['lifecycle']['promotionCount'] == 5
    assert settings.voting_window_days == 7
    assert settings.staleness_days == 30
    assert settings.reveal_timeout == baseline['timeouts']['revealSeconds']
    assert settings.points_poll_promoted == 10
    assert settings.max_binary_question_length == 50


def test_network_override_merges(monkeypatch):
    monkeypatch.setenv('VEILEDCASTS_NETWORK', 'mainnet')
    config, sources = load_config_with_sources('voting')

    assert config['ledger']['mode'] == 'solana'
    assert config['ledger']['votingProgramId'] == _read_json(CONFIG_ROOT / 'voting.json')['ledger']['votingProgramId']
    assert config['timeouts']['revealSeconds'] == 60
    assert [path.name for path in sources] == ['voting.json', 'voting.mainnet.json']


def test_disabled_network_values_are_ignored(monkeypatch):
    monkeypatch.setenv('VEILEDCASTS_NETWORK', 'off')
    assert load_config('voting')['ledger']['mode'] == 'local'


def test_environment_wins_over_json(monkeypatch):
    monkeypatch.setenv('REVEAL_TIMEOUT', '12.5')
    monkeypatch.setenv('PROMOTION_COUNT', 'not-a-number')
    monkeypatch.setenv('CRON_SECRET', '  s3cret ')
    settings = load_settings({'timeouts': {'revealSeconds': 99}, 'lifecycle': {'promotionCount': 3}})

    assert settings.reveal_timeout == 12.5
    assert settings.promotion_count == 3
    assert settings.cron_secret == 's3cret'


def test_settings_cache_resets(monkeypatch):
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    reset_settings()
    assert get_settings().log_level == 'DEBUG'
    monkeypatch.setenv('LOG_LEVEL', 'warning')
    assert get_settings().log_level == 'DEBUG'
    reset_settings()
    assert get_settings().log_level == 'WARNING'


def test_solana_mode_requires_authority_keypair(monkeypatch):
    monkeypatch.delenv('LEDGER_MODE', raising=False)
    monkeypatch.delenv('AUTHORITY_KEYPAIR', raising=False)
    settings = load_settings({'ledger': {'mode': 'solana'}})
    with pytest.raises(ConfigurationError):
        build_ledger(settings, AddressDeriver.from_settings(settings))


def test_selection_cap_is_not_configurable(database):
    settings = load_settings({'lifecycle': {'selectionCap': 2}})
    assert not hasattr(settings, 'selection_cap')
    assert SelectionLedger(database).cap == SELECTION_CAP == 5


def test_network_without_override_file_reads_only_the_base():
    config, sources = load_config_with_sources('voting', network='staging')

    assert [path.name for path in sources] == ['voting.json']
    assert config == _read_json(CONFIG_ROOT / 'voting.json')
