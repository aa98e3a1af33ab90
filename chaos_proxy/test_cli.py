import importlib
from unittest.mock import patch

import pytest

from chaos_proxy import cli
from chaos_proxy import vars as defaults
from chaos_proxy.errors import ConfigurationError, FormatError
from chaos_proxy.failures.prefix_table import PrefixFailureTable


def test_single_dash_flags():
    args = cli.build_parser().parse_args(
        [
            "-port",
            "9100",
            "-failure-rate",
            "10",
            "-failure-transfer-rate",
            "5",
            "-fail-with-prefix",
            "/small3/aaa:503",
        ]
    )

    settings = cli.settings_from_args(args)

    assert settings.port == 9100
    assert settings.failure_rate == 10
    assert settings.failure_transfer_rate == 5
    assert settings.fail_with_prefix == PrefixFailureTable({"/small3/aaa": 503})


def test_double_dash_aliases():
    args = cli.build_parser().parse_args(
        ["--port", "9200", "--buffer-chunked-body", "--upstream-timeout", "2.5"]
    )

    settings = cli.settings_from_args(args)

    assert settings.port == 9200
    assert settings.buffer_chunked_body is True
    assert settings.upstream_timeout == 2.5


def test_defaults():
    args = cli.build_parser().parse_args([])

    settings = cli.settings_from_args(args)

    assert settings.port == 9005
    assert settings.failure_rate == 0
    assert not settings.fail_with_prefix


def test_bad_prefix_spec_raises():
    args = cli.build_parser().parse_args(["-fail-with-prefix", "a"])

    with pytest.raises(FormatError):
        cli.settings_from_args(args)


@pytest.mark.parametrize(
    "argv",
    [
        ["-failure-rate", "101"],
        ["-failure-rate", "-1"],
        ["-failure-transfer-rate", "200"],
        ["-fail-with-prefix", "/a:x"],
        ["-failure-rate", "ten"],
        ["-port", "abc"],
        ["-upstream-timeout", "soon"],
    ],
)
def test_main_refuses_to_start_on_bad_configuration(argv):
    with patch.object(cli.uvicorn, "run") as run:
        exit_code = cli.main(argv)

    assert exit_code == cli.EXIT_CONFIGURATION_ERROR
    run.assert_not_called()


def test_main_starts_server():
    with patch.object(cli.uvicorn, "run") as run, patch.object(
        cli, "setup_tracing"
    ) as setup_tracing:
        exit_code = cli.main(["-port", "9300", "-failure-rate", "20"])

    assert exit_code == 0
    setup_tracing.assert_called_once()
    run.assert_called_once()
    app = run.call_args[0][0]
    assert app.state.settings.failure_rate == 20
    assert run.call_args[1]["port"] == 9300


def test_bad_environment_value_is_a_configuration_error(monkeypatch):
    monkeypatch.setenv("FAILURE_RATE", "abc")
    importlib.reload(defaults)
    try:
        with patch.object(cli.uvicorn, "run") as run:
            exit_code = cli.main([])
    finally:
        monkeypatch.undo()
        importlib.reload(defaults)

    assert exit_code == cli.EXIT_CONFIGURATION_ERROR
    run.assert_not_called()


def test_non_integer_rate_raises_configuration_error():
    args = cli.build_parser().parse_args(["-failure-rate", "ten"])

    with pytest.raises(ConfigurationError):
        cli.settings_from_args(args)
