"""
Per-request proxy flow.

A request first goes through the two failure gates (global rate, then path
prefix). Requests that pass are counted, forwarded to the upstream they
name, and the upstream body is relayed back chunk by chunk. After every
chunk the transfer-failure gate may cut the relay short.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace

from chaos_proxy.config import ProxySettings
from chaos_proxy.counters import MethodCounters
from chaos_proxy.errors import (
    StagingError,
    TransferError,
    UpstreamConstructionError,
    UpstreamTransportError,
)
from chaos_proxy.failures.decision import FailureDecision
from chaos_proxy.proxy.body_buffer import StagedBody, stage_body
from chaos_proxy.proxy.headers import (
    filter_response_headers,
    get_request_path,
    get_request_target,
    get_target_url,
    prepare_headers,
    reject_forwarding_loop,
)
from chaos_proxy.utils.exception_logging import error_kind, log_exception_with_details

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

UNKNOWN_LENGTH = -1


@dataclass
class TransferOutcome:
    """What happened while relaying one response body."""

    target: str
    method: str
    status_code: int
    request_bytes: int
    response_bytes: int
    sent_bytes: int = 0
    chunks: int = 0
    error_transfer: bool = False
    injected: bool = False

    def log(self) -> None:
        message = (
            f"[Proxy] request to {self.target} completed "
            f"code={self.status_code} method={self.method} "
            f"req-bytes={self.request_bytes} resp-bytes={self.response_bytes} "
            f"sent-bytes={self.sent_bytes} chunks={self.chunks} "
            f"error-transfer={self.error_transfer}"
        )
        if self.status_code == 200 and not self.error_transfer:
            logger.info(message)
        else:
            logger.warning(message)


class RelayResponse(StreamingResponse):
    """
    Streaming response that always finalizes its body iterator and runs
    ``on_close``, even when the client leaves before the body started.
    """

    def __init__(
        self,
        content: AsyncIterator[bytes],
        status_code: int = 200,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        super().__init__(content, status_code=status_code)
        self.on_close = on_close

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()
            if self.on_close is not None:
                await asyncio.shield(self.on_close())


def _content_length(value: Optional[str]) -> int:
    if value is None:
        return UNKNOWN_LENGTH
    try:
        return int(value)
    except ValueError:
        return UNKNOWN_LENGTH


def _has_chunked_body(request: Request) -> bool:
    transfer_encoding = request.headers.get("transfer-encoding", "")
    return "chunked" in transfer_encoding.lower()


class ProxyHandler:
    """Handles one inbound request end to end."""

    def __init__(
        self,
        settings: ProxySettings,
        client: httpx.AsyncClient,
        decision: FailureDecision,
        counters: MethodCounters,
    ):
        self.settings = settings
        self.client = client
        self.decision = decision
        self.counters = counters

    async def handle(self, request: Request) -> Response:
        with tracer.start_as_current_span("proxy_request") as span:
            target = get_request_target(request)
            span.set_attribute("proxy.method", request.method)
            span.set_attribute("proxy.target", target)

            if self.decision.should_fail(self.settings.failure_rate):
                span.set_attribute("proxy.injected_failure", "global")
                logger.warning(f"[Proxy] Failing request to: {target}")
                return Response(status_code=500)

            status_code, failed = self.decision.should_fail_by_prefix(
                get_request_path(request)
            )
            if failed:
                span.set_attribute("proxy.injected_failure", "prefix")
                logger.warning(
                    f"[Proxy] Failing request due to prefix match: {target} -> {status_code}"
                )
                return Response(status_code=status_code)

            # a looped request is refused before it is counted a second time
            try:
                reject_forwarding_loop(request)
            except UpstreamConstructionError as e:
                span.set_attribute("proxy.error", "forwarding_loop")
                log_exception_with_details(
                    logger, f"[Proxy] Request to {target} failed:", e
                )
                return Response(status_code=500)

            self.counters.add(request.method, 1)

            staged: Optional[StagedBody] = None
            try:
                upstream_request, request_bytes, staged = await self._build_upstream_request(
                    request
                )
                span.set_attribute("proxy.target_url", str(upstream_request.url))
                upstream = await self._send(upstream_request)
            except (UpstreamConstructionError, UpstreamTransportError, StagingError) as e:
                if staged is not None:
                    staged.release()
                span.set_attribute("proxy.error", error_kind(e))
                log_exception_with_details(
                    logger, f"[Proxy] Request to {target} failed:", e
                )
                return Response(status_code=500)
            except Exception as e:
                if staged is not None:
                    staged.release()
                span.set_attribute("proxy.error", error_kind(e))
                log_exception_with_details(
                    logger,
                    f"[Proxy] Unexpected error proxying {target}:",
                    e,
                    with_traceback=True,
                )
                return Response(status_code=500)

            span.set_attribute("proxy.status_code", upstream.status_code)

            outcome = TransferOutcome(
                target=target,
                method=request.method,
                status_code=upstream.status_code,
                request_bytes=request_bytes,
                response_bytes=_content_length(upstream.headers.get("content-length")),
            )

            async def close_upstream() -> None:
                if staged is not None:
                    staged.release()
                await upstream.aclose()

            response = RelayResponse(
                self.relay(upstream, outcome, staged),
                status_code=upstream.status_code,
                on_close=close_upstream,
            )
            response.raw_headers = [
                (name.encode("latin-1"), value.encode("latin-1"))
                for name, value in filter_response_headers(upstream.headers.multi_items())
            ]
            return response

    async def _build_upstream_request(self, request: Request):
        """
        Build the outbound request.

        Returns the request, the number of body bytes it carries
        (``UNKNOWN_LENGTH`` when streamed without a length) and the staged
        body, if any, which the caller must release.
        """
        target_url = get_target_url(request)
        headers = prepare_headers(request)
        staged: Optional[StagedBody] = None
        content = None
        request_bytes = _content_length(request.headers.get("content-length"))

        if "content-length" in request.headers:
            content = request.stream()
        elif _has_chunked_body(request):
            if self.settings.buffer_chunked_body:
                staged = await stage_body(request.stream())
                headers["content-length"] = str(staged.length)
                request_bytes = staged.length
                content = staged.aiter_chunks()
            else:
                content = request.stream()
        else:
            request_bytes = 0

        try:
            upstream_request = self.client.build_request(
                request.method,
                target_url,
                headers=headers,
                content=content,
            )
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            if staged is not None:
                staged.release()
            raise UpstreamConstructionError(
                f"creating request to {target_url}: {e}"
            ) from e
        return upstream_request, request_bytes, staged

    async def _send(self, upstream_request: httpx.Request) -> httpx.Response:
        try:
            return await self.client.send(upstream_request, stream=True)
        except httpx.UnsupportedProtocol as e:
            raise UpstreamConstructionError(
                f"creating request to {upstream_request.url}: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamTransportError(
                f"performing the request to {upstream_request.url}: {e}"
            ) from e

    async def relay(
        self,
        upstream: httpx.Response,
        outcome: TransferOutcome,
        staged: Optional[StagedBody] = None,
    ) -> AsyncIterator[bytes]:
        """
        Relay the raw upstream body in ``chunk_size`` pieces.

        After each chunk the transfer-failure gate is consulted; when it fires
        the relay raises ``TransferError``. An upstream read failure raises it
        too. Either way the server drops the connection without completing
        the body, so the client sees a broken transfer rather than a short
        one. The client going away ends the relay with ``error_transfer`` set.

        Raises:
            TransferError: the transfer was cut, on purpose or not
        """
        span = tracer.start_span("proxy_transfer")
        finished = False
        try:
            async for chunk in upstream.aiter_raw(self.settings.chunk_size):
                yield chunk
                outcome.chunks += 1
                outcome.sent_bytes += len(chunk)
                if self.decision.should_abort_transfer(
                    self.settings.failure_transfer_rate
                ):
                    outcome.injected = True
                    error = TransferError(
                        f"injected transfer failure for {outcome.target} "
                        f"after {outcome.chunks} chunks"
                    )
                    span.set_attribute("proxy.error", "injected")
                    log_exception_with_details(
                        logger, "[Transfer]", error, logging.WARNING
                    )
                    raise error
            finished = True
        except httpx.HTTPError as e:
            span.set_attribute("proxy.error", error_kind(e))
            log_exception_with_details(
                logger,
                f"[Transfer] Reading response from {outcome.target} failed:",
                e,
                logging.WARNING,
            )
            raise TransferError(
                f"reading response from {outcome.target}: {e}"
            ) from e
        finally:
            outcome.error_transfer = not finished
            if staged is not None:
                staged.release()
            span.set_attribute("proxy.transfer.chunks", outcome.chunks)
            span.set_attribute("proxy.transfer.bytes", outcome.sent_bytes)
            span.set_attribute("proxy.transfer.error", outcome.error_transfer)
            span.set_attribute("proxy.transfer.injected", outcome.injected)
            span.end()
            outcome.log()
            # runs to completion even if the relay task is being cancelled
            await asyncio.shield(upstream.aclose())
