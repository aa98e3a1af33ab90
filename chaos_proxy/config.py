import logging
from dataclasses import dataclass, field

from chaos_proxy import vars as defaults
from chaos_proxy.errors import ConfigurationError
from chaos_proxy.failures.prefix_table import PrefixFailureTable

logger = logging.getLogger("uvicorn.error")


def parse_int(name: str, raw) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"bad {name}: expected an integer, got {raw!r}") from e


def parse_float(name: str, raw) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"bad {name}: expected a number, got {raw!r}") from e


def _check_rate(name: str, value: int) -> None:
    if value < 0 or value > 100:
        raise ConfigurationError(
            f"bad {name}: expected a value in the range [0, 100], got {value}"
        )


@dataclass(frozen=True)
class ProxySettings:
    """
    Runtime configuration, built once at startup and handed to the handler.

    Attributes:
        host: Address to listen on
        port: Port to listen on
        failure_rate: Percentage of requests failed outright with a 500
        failure_transfer_rate: Percentage applied to every relayed chunk
        fail_with_prefix: Path prefixes failed with a fixed status code
        buffer_chunked_body: Stage chunked request bodies to disk so the
            upstream receives an exact Content-Length
        upstream_timeout: Seconds allowed for each upstream call
        counters_interval: Seconds between method counter dumps
        chunk_size: Size of the chunks relayed to the client
    """

    host: str = "0.0.0.0"
    port: int = 9005
    failure_rate: int = 0
    failure_transfer_rate: int = 0
    fail_with_prefix: PrefixFailureTable = field(default_factory=PrefixFailureTable)
    buffer_chunked_body: bool = False
    upstream_timeout: float = 30.0
    counters_interval: float = 10.0
    chunk_size: int = 4096

    def __post_init__(self):
        _check_rate("failure rate", self.failure_rate)
        _check_rate("failure transfer rate", self.failure_transfer_rate)
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"bad port: {self.port}")
        if self.chunk_size <= 0:
            raise ConfigurationError(f"bad chunk size: {self.chunk_size}")
        if self.upstream_timeout <= 0:
            raise ConfigurationError(
                f"bad upstream timeout: {self.upstream_timeout}"
            )
        if self.counters_interval <= 0:
            raise ConfigurationError(
                f"bad counters interval: {self.counters_interval}"
            )

    @classmethod
    def from_env(cls) -> "ProxySettings":
        """
        Build settings from the environment values in ``chaos_proxy.vars``.

        Raises:
            ConfigurationError: a value is not a number, out of range, or the
                prefix spec is malformed
        """
        return cls(
            host=defaults.HOST,
            port=parse_int("port", defaults.PORT),
            failure_rate=parse_int("failure rate", defaults.FAILURE_RATE),
            failure_transfer_rate=parse_int(
                "failure transfer rate", defaults.FAILURE_TRANSFER_RATE
            ),
            fail_with_prefix=PrefixFailureTable.parse(defaults.FAIL_WITH_PREFIX),
            buffer_chunked_body=defaults.BUFFER_CHUNKED_BODY,
            upstream_timeout=parse_float("upstream timeout", defaults.UPSTREAM_TIMEOUT),
            counters_interval=parse_float(
                "counters interval", defaults.COUNTERS_INTERVAL
            ),
            chunk_size=parse_int("chunk size", defaults.CHUNK_SIZE),
        )

    def log_banner(self) -> None:
        logger.info("============== STARTING CHAOS PROXY ==================")
        logger.info(f"== Listening on: {self.host}:{self.port}")
        logger.info(f"== F-Rate:    {self.failure_rate}%")
        logger.info(f"== F-Tr-Rate: {self.failure_transfer_rate}%")
        logger.info(f"== F-Prefix:  {self.fail_with_prefix}")
        logger.info(f"== Buffering: {self.buffer_chunked_body}")
        logger.info("======================================================")
