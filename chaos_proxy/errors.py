"""Error taxonomy for the proxy.

Configuration errors are fatal at startup. Everything else is scoped to a
single request and never retried.
"""


class ProxyError(Exception):
    """Base class for all proxy errors."""


class ConfigurationError(ProxyError):
    """Invalid startup configuration (rates out of range, bad prefix spec)."""


class FormatError(ConfigurationError):
    """A ``prefix:code;...`` string does not follow the grammar."""


class UpstreamError(ProxyError):
    """The upstream request could not be completed."""


class UpstreamConstructionError(UpstreamError):
    """The outbound request could not be built from the inbound one."""


class UpstreamTransportError(UpstreamError):
    """Sending the outbound request failed (DNS, connect, TLS, timeout)."""


class TransferError(ProxyError):
    """Relaying the response body was interrupted, for real or on purpose."""


class StagingError(ProxyError):
    """The inbound body could not be staged to temporary storage."""
