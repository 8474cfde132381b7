"""Per-request value and the ordered filter chain that processes it."""

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Protocol

from fastapi import Request, Response
from starlette.datastructures import Headers, MutableHeaders


@dataclass(frozen=True)
class GatewayRequest:
    """Immutable view of one inbound request.

    Filters never mutate a request; they derive a new one with
    :meth:`with_headers` or :meth:`without_headers` and pass it on. Verified
    identity therefore only ever lives on the value handed down the chain.
    """

    method: str
    path: str
    query: str = ""
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    client_host: str | None = None

    @classmethod
    async def from_request(cls, request: Request) -> "GatewayRequest":
        return cls(
            method=request.method,
            path=request.url.path,
            query=request.url.query,
            headers=Headers(raw=list(request.headers.raw)),
            body=await request.body(),
            client_host=request.client.host if request.client else None,
        )

    def header(self, name: str) -> str | None:
        return self.headers.get(name)

    def with_headers(self, values: Mapping[str, str]) -> "GatewayRequest":
        """Copy with ``values`` set, replacing any existing header of the same name."""
        mutable = MutableHeaders(raw=list(self.headers.raw))
        for name, value in values.items():
            mutable[name] = value
        return replace(self, headers=Headers(raw=list(mutable.raw)))

    def without_headers(self, names: Iterable[str]) -> "GatewayRequest":
        mutable = MutableHeaders(raw=list(self.headers.raw))
        for name in names:
            del mutable[name]
        return replace(self, headers=Headers(raw=list(mutable.raw)))


Endpoint = Callable[[GatewayRequest], Awaitable[Response]]


class GatewayFilter(Protocol):
    """One stage of the chain.

    ``process`` either returns a response itself (short-circuit) or awaits
    ``call_next`` with the same or a derived request.
    """

    name: str

    async def process(self, request: GatewayRequest, call_next: Endpoint) -> Response: ...


class FilterChain:
    """Runs filters in order and ends at ``endpoint`` (the forwarder)."""

    def __init__(self, filters: Sequence[GatewayFilter], endpoint: Endpoint):
        self.filters = tuple(filters)
        self.endpoint = endpoint

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.filters]

    async def __call__(self, request: GatewayRequest) -> Response:
        return await self._dispatch(0, request)

    async def _dispatch(self, index: int, request: GatewayRequest) -> Response:
        if index == len(self.filters):
            return await self.endpoint(request)

        async def call_next(next_request: GatewayRequest) -> Response:
            return await self._dispatch(index + 1, next_request)

        return await self.filters[index].process(request, call_next)
