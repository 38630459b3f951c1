import pytest

from connwright import InvalidArgumentError, ManagerConfig, coerce_config
from connwright.config import DEFAULT_THREADS, DEFAULT_TIMEOUT, normalize_option_name


@pytest.mark.parametrize(
    "name, expected",
    [
        ("keystore-pass", "keystore_pass"),
        ("insecure?", "insecure"),
        (":default-per-route", "default_per_route"),
        ("threads", "threads"),
    ],
)
def test_normalize_option_name(name, expected):
    assert normalize_option_name(name) == expected


def test_defaults():
    config = coerce_config(None)

    assert config.timeout == DEFAULT_TIMEOUT == 5
    assert config.threads == DEFAULT_THREADS == 4
    assert config.default_per_route is None
    assert config.insecure is False
    assert not config.has_stores
    assert not config.has_managers


def test_from_mapping_accepts_hyphenated_names():
    config = coerce_config({
        "timeout": 30,
        "threads": 8,
        "default-per-route": 4,
        "insecure?": True,
        "keystore-type": "pem",
        "io-config": {"select-interval": 50},
    })

    assert config.timeout == 30
    assert config.threads == 8
    assert config.default_per_route == 4
    assert config.insecure is True
    assert config.keystore_type == "pem"
    assert config.io_config == {"select_interval": 50}


def test_none_values_fall_back_to_defaults():
    config = coerce_config({"timeout": None, "threads": None})

    assert config.timeout == 5
    assert config.threads == 4


def test_unknown_options_are_ignored():
    config = coerce_config({"retries": 3, "threads": 2})

    assert config.threads == 2
    assert not hasattr(config, "retries")


def test_io_config_is_frozen():
    config = ManagerConfig(io_config={"select-interval": 10})

    with pytest.raises(TypeError):
        config.io_config["select_interval"] = 20


def test_config_instance_passes_through():
    config = ManagerConfig(threads=2)

    assert coerce_config(config) is config
    assert config.replace(threads=3).threads == 3


def test_has_stores_and_managers():
    assert ManagerConfig(trust_store=b"...").has_stores
    assert ManagerConfig(key_managers=object()).has_managers


@pytest.mark.parametrize("value", [42, "threads=4", ["threads", 4]])
def test_bad_config_shapes(value):
    with pytest.raises(InvalidArgumentError):
        coerce_config(value)


def test_bad_io_config_shape():
    with pytest.raises(InvalidArgumentError):
        ManagerConfig(io_config=[("select-interval", 10)])
