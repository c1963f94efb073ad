import pytest

from eventsidecar.config import Config


def test_new_uses_defaults_when_not_given():
    config = Config.new(8080, None, None)
    assert config.address == "0.0.0.0:8080"
    assert config.event_stream_buffer_length == 5000
    assert config.max_concurrent_subscribers == 100


def test_new_uses_given_values():
    config = Config.new(19999, 7, 3)
    assert config.address.endswith(":19999")
    assert config.event_stream_buffer_length == 7
    assert config.max_concurrent_subscribers == 3


def test_default_equals_new_with_port_zero():
    assert Config.default() == Config.new(0, None, None)
    assert Config.default().address.endswith(":0")


def test_invalid_port_rejected():
    with pytest.raises(ValueError):
        Config.new(70000)