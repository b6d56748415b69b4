import logging

import pytest

import config


def test_built_in_secret_is_refused_outside_development():
    with pytest.raises(RuntimeError, match='IDENTITY_SECRET'):
        config._check_identity_secret(config.DEV_SECRET, allow_dev_secret=False)


def test_built_in_secret_is_allowed_for_local_development(caplog):
    caplog.set_level(logging.WARNING, logger='config')
    config._check_identity_secret(config.DEV_SECRET, allow_dev_secret=True)

    assert 'development secret' in caplog.text


def test_empty_identity_secret_is_refused():
    with pytest.raises(RuntimeError):
        config._check_identity_secret('', allow_dev_secret=True)


def test_configured_secret_is_accepted():
    config._check_identity_secret('a-long-random-value', allow_dev_secret=False)


@pytest.mark.parametrize(('raw', 'expected'), [('1', True), (' TRUE ', True), ('off', False), (None, False)])
def test_coerce_bool(raw, expected):
    assert config._coerce_bool(raw) is expected
