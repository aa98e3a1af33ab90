"""
Command line entry point.

Usage:
    chaos-proxy -port 9005 -failure-rate 10 -fail-with-prefix "/small3/aaa:503"
    python -m chaos_proxy -failure-transfer-rate 5

Flags default to the environment variables read in ``chaos_proxy.vars``.
"""

import argparse
import logging
from typing import Optional, Sequence

import uvicorn

from chaos_proxy import vars as defaults
from chaos_proxy.config import ProxySettings, parse_float, parse_int
from chaos_proxy.errors import ConfigurationError
from chaos_proxy.failures.prefix_table import PrefixFailureTable
from chaos_proxy.server import create_app, setup_tracing

logger = logging.getLogger("uvicorn.error")

EXIT_CONFIGURATION_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chaos-proxy",
        description="HTTP forward proxy injecting synthetic failures",
    )
    parser.add_argument(
        "-port", "--port", default=defaults.PORT, help="proxy port"
    )
    parser.add_argument(
        "-host", "--host", default=defaults.HOST, help="address to listen on"
    )
    parser.add_argument(
        "-failure-rate",
        "--failure-rate",
        dest="failure_rate",
        default=defaults.FAILURE_RATE,
        help="percentage of requests failed with a 500",
    )
    parser.add_argument(
        "-failure-transfer-rate",
        "--failure-transfer-rate",
        dest="failure_transfer_rate",
        default=defaults.FAILURE_TRANSFER_RATE,
        help="percentage of failure applied to every relayed chunk",
    )
    parser.add_argument(
        "-fail-with-prefix",
        "--fail-with-prefix",
        dest="fail_with_prefix",
        default=defaults.FAIL_WITH_PREFIX,
        help='fail requests matching a prefix, e.g. "/a:503;/b:404"',
    )
    parser.add_argument(
        "-buffer-chunked-body",
        "--buffer-chunked-body",
        dest="buffer_chunked_body",
        action="store_true",
        default=defaults.BUFFER_CHUNKED_BODY,
        help="stage chunked request bodies on disk to send a Content-Length",
    )
    parser.add_argument(
        "-upstream-timeout",
        "--upstream-timeout",
        dest="upstream_timeout",
        default=defaults.UPSTREAM_TIMEOUT,
        help="seconds allowed for each upstream call",
    )
    parser.add_argument(
        "-counters-interval",
        "--counters-interval",
        dest="counters_interval",
        default=defaults.COUNTERS_INTERVAL,
        help="seconds between method counter dumps",
    )
    parser.add_argument(
        "-log-level",
        "--log-level",
        dest="log_level",
        default=defaults.LOG_LEVEL,
        choices=["critical", "error", "warning", "info", "debug", "trace"],
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> ProxySettings:
    """
    Numeric flags are parsed here rather than by argparse so that a bad value
    from the command line or the environment is reported the same way.

    Raises:
        ConfigurationError: a value is not a number, a rate is out of range,
            or the prefix spec is malformed
    """
    return ProxySettings(
        host=args.host,
        port=parse_int("port", args.port),
        failure_rate=parse_int("failure rate", args.failure_rate),
        failure_transfer_rate=parse_int(
            "failure transfer rate", args.failure_transfer_rate
        ),
        fail_with_prefix=PrefixFailureTable.parse(args.fail_with_prefix),
        buffer_chunked_body=args.buffer_chunked_body,
        upstream_timeout=parse_float("upstream timeout", args.upstream_timeout),
        counters_interval=parse_float("counters interval", args.counters_interval),
        chunk_size=parse_int("chunk size", defaults.CHUNK_SIZE),
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.log_level == "trace" else args.log_level.upper()
    )

    try:
        settings = settings_from_args(args)
    except ConfigurationError as e:
        logger.critical(f"[Config] {e}")
        return EXIT_CONFIGURATION_ERROR

    setup_tracing()
    settings.log_banner()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=args.log_level,
    )
    return 0
