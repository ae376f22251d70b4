"""First-match routing of typed updates through predicate-guarded handlers."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .filters import Filter, as_filter
from .logging import get_logger
from .update import TypedUpdate, UpdateKind

logger = get_logger(__name__)

__all__ = [
    "UNMATCHED",
    "DispatchResult",
    "Handled",
    "Handler",
    "Middleware",
    "Route",
    "Router",
]


class _Unmatched:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNMATCHED"

    def __bool__(self) -> bool:
        return False


UNMATCHED = _Unmatched()


@dataclass(frozen=True, slots=True)
class Handled:
    value: Any
    route: Route


DispatchResult = Handled | _Unmatched

Handler = Callable[[TypedUpdate], Awaitable[Any] | Any]
RouterHandler = Callable[[TypedUpdate], Awaitable[DispatchResult]]
Middleware = Callable[[RouterHandler], RouterHandler]

F = TypeVar("F", bound=Handler)


@dataclass(frozen=True, slots=True)
class Route:
    kind: UpdateKind | None
    filters: tuple[Filter, ...]
    handler: Handler | None = None
    router: Router | None = None

    def __post_init__(self) -> None:
        if (self.handler is None) == (self.router is None):
            raise ValueError("a route needs exactly one of handler or router")

    def matches(self, update: TypedUpdate) -> bool:
        if self.kind is not None and update.kind is not self.kind:
            return False
        return all(item.evaluate(update) for item in self.filters)

    @property
    def name(self) -> str:
        if self.router is not None:
            return f"router:{self.router.name}"
        return getattr(self.handler, "__qualname__", repr(self.handler))


class Router:
    """Ordered routes plus the middleware wrapped around walking them.

    Middleware registered with :meth:`use` wraps predicate evaluation and the
    handler of every route reachable through this router, outermost first.
    A nested router that matches nothing lets the walk continue with the next
    route of its parent.
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name or f"router-{id(self):x}"
        self._routes: list[Route] = []
        self._middlewares: list[Middleware] = []
        self._composed: RouterHandler | None = None

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def use(self, *middlewares: Middleware) -> Router:
        self._middlewares.extend(middlewares)
        self._composed = None
        return self

    def add(
        self,
        kind: UpdateKind | None,
        handler: Handler,
        *filters: Filter | Callable[[TypedUpdate], bool],
    ) -> Route:
        route = Route(
            kind=kind,
            filters=tuple(as_filter(item) for item in filters),
            handler=handler,
        )
        self._routes.append(route)
        return route

    def include(
        self,
        router: Router,
        *filters: Filter | Callable[[TypedUpdate], bool],
        kind: UpdateKind | None = None,
    ) -> Router:
        if router is self:
            raise ValueError("a router cannot include itself")
        self._routes.append(
            Route(
                kind=kind,
                filters=tuple(as_filter(item) for item in filters),
                router=router,
            )
        )
        return self

    def on(
        self,
        kind: UpdateKind | None,
        *filters: Filter | Callable[[TypedUpdate], bool],
    ) -> Callable[[F], F]:
        def decorator(handler: F) -> F:
            self.add(kind, handler, *filters)
            return handler

        return decorator

    def update(self, *filters: Filter | Callable[[TypedUpdate], bool]) -> Callable[[F], F]:
        return self.on(None, *filters)

    def message(self, *filters: Filter | Callable[[TypedUpdate], bool]) -> Callable[[F], F]:
        return self.on(UpdateKind.MESSAGE, *filters)

    def edited_message(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.EDITED_MESSAGE, *filters)

    def channel_post(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.CHANNEL_POST, *filters)

    def edited_channel_post(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.EDITED_CHANNEL_POST, *filters)

    def inline_query(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.INLINE_QUERY, *filters)

    def chosen_inline_result(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.CHOSEN_INLINE_RESULT, *filters)

    def callback_query(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.CALLBACK_QUERY, *filters)

    def shipping_query(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.SHIPPING_QUERY, *filters)

    def pre_checkout_query(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.PRE_CHECKOUT_QUERY, *filters)

    def poll(self, *filters: Filter | Callable[[TypedUpdate], bool]) -> Callable[[F], F]:
        return self.on(UpdateKind.POLL, *filters)

    def poll_answer(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.POLL_ANSWER, *filters)

    def my_chat_member(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.MY_CHAT_MEMBER, *filters)

    def chat_member(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.CHAT_MEMBER, *filters)

    def chat_join_request(
        self, *filters: Filter | Callable[[TypedUpdate], bool]
    ) -> Callable[[F], F]:
        return self.on(UpdateKind.CHAT_JOIN_REQUEST, *filters)

    def _compose(self) -> RouterHandler:
        handler: RouterHandler = self._walk
        for middleware in reversed(self._middlewares):
            handler = middleware(handler)
        return handler

    async def dispatch(self, update: TypedUpdate) -> DispatchResult:
        if self._composed is None:
            self._composed = self._compose()
        return await self._composed(update)

    async def _walk(self, update: TypedUpdate) -> DispatchResult:
        for route in self._routes:
            if not route.matches(update):
                continue
            if route.router is not None:
                result = await route.router.dispatch(update)
                if result is UNMATCHED:
                    continue
                return result
            handler = route.handler
            if handler is None:
                continue
            logger.debug(
                "router.matched",
                router=self.name,
                route=route.name,
                update_id=update.update_id,
                kind=update.kind.value,
            )
            value = handler(update)
            if inspect.isawaitable(value):
                value = await value
            return Handled(value=value, route=route)
        return UNMATCHED
