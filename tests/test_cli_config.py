"""Tests for CLI configuration and the apply step."""

import json

import pytest

from cli.config import Config, ConfigError
from cli.main import apply_config, build_parser
from common.constants import CLUSTERS_DATABASE, REPLICATOR_DATABASE


def write_config(tmp_path, data) -> Config:
    config_path = tmp_path / 'couch-setup.json'
    with open(config_path, 'w') as f:
        json.dump(data, f)
    return Config(config_path)


def test_config_fills_defaults(tmp_path):
    """Test that missing keys fall back to defaults."""
    config = write_config(tmp_path, {'couch_url': 'http://couch.test'})

    assert config.get_couch_url() == 'http://couch.test'
    assert config.get_disable_watching() is False
    assert config.get_timeout() == 30
    assert config.get_databases() == []


def test_config_missing_file(tmp_path):
    """Test that a missing file is reported."""
    with pytest.raises(ConfigError):
        Config(tmp_path / 'nope.json')


def test_config_invalid_json(tmp_path):
    """Test that a corrupt file is reported."""
    config_path = tmp_path / 'couch-setup.json'
    config_path.write_text('{not json')

    with pytest.raises(ConfigError):
        Config(config_path)


def test_config_parses_databases(tmp_path):
    """Test that database entries become DatabaseSetup objects."""
    config = write_config(tmp_path, {
        'current_cluster': 'eu',
        'databases': [
            {'name': 'users', 'options': {'partitioned': True}, 'templates': {'settings': {'a': 1}}},
            {'name': 'logs', 'ignore_missing': True},
        ],
    })

    setups = config.get_databases()

    assert config.get_current_cluster() == 'eu'
    assert [setup.name for setup in setups] == ['users', 'logs']
    assert setups[0].options.partitioned is True
    assert setups[0].templates == {'settings': {'a': 1}}
    assert setups[1].ignore_missing is True


def test_config_rejects_invalid_database(tmp_path):
    """Test that an entry without a name is rejected."""
    config = write_config(tmp_path, {'databases': [{'documents': {}}]})

    with pytest.raises(ConfigError):
        config.get_databases()


def test_parser_flags():
    args = build_parser().parse_args(['--config', 'x.json', '--once', '--debug'])

    assert str(args.config) == 'x.json'
    assert args.once is True
    assert args.debug is True


@pytest.mark.asyncio
async def test_apply_config_once(tmp_path, fake_couch, couch_server):
    """Test a one-shot run with a topology already stored in the clusters database."""
    fake_couch.put_document(CLUSTERS_DATABASE, {
        '_id': 'replicators',
        'clusters': {
            'eu': {'url': 'https://eu.example.com', 'mode': 'both'},
            'us': {'url': 'https://us.example.com', 'mode': 'target'},
        },
    })
    config = write_config(tmp_path, {
        'couch_url': 'http://couch.test',
        'current_cluster': 'eu',
        'databases': [{'name': 'users', 'documents': {'_design/users': {'views': {}}}}],
    })

    cleanup = await apply_config(config, couch_server, once=True)

    assert cleanup.closed
    assert '_design/users' in fake_couch.docs('users')
    assert set(fake_couch.docs(REPLICATOR_DATABASE)) == {'users.to.us'}


@pytest.mark.asyncio
async def test_apply_config_reports_first_failure(tmp_path, fake_couch, couch_server):
    """Test that a failing database does not hide the error."""
    fake_couch.fail[('PUT', '/broken')] = 403
    config = write_config(tmp_path, {
        'databases': [{'name': 'fine'}, {'name': 'broken'}],
    })

    with pytest.raises(Exception):
        await apply_config(config, couch_server, once=True)

    assert 'fine' in fake_couch.dbs
