"""
Query Construction and Result Sequences.

Builds SQL query text from filters and projections, and exposes paged query
results either as a lazy async sequence (EntityPager) or as a push-based
stream with explicit subscription handling (EntityStream).

Author: cosmostable Team
Date: 2026-10-19
"""

import asyncio
import contextlib
import inspect
import logging
import re
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

from .entities import from_document, validate_field_name
from .exceptions import InvalidQueryError, NoElementError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Page = List[Dict[str, Any]]
PageSource = Callable[[], AsyncIterator[Page]]

_SELECT = re.compile(r"^SELECT\b", re.IGNORECASE)
_CLAUSE = re.compile(r"^(WHERE|ORDER\s+BY)\b", re.IGNORECASE)


def build_query(query: Optional[str] = None, columns: Optional[Sequence[str]] = None) -> str:
    """Build query text from an optional filter and projection.

    Args:
        query: Full SELECT statement, a WHERE/ORDER BY clause, or a bare predicate
        columns: Field names to project

    Returns:
        SQL query text

    Raises:
        InvalidQueryError: If columns are combined with a full SELECT statement,
            or a column is not a plain identifier

    Examples:
        >>> build_query("c.Name = 'n'")
        "SELECT * FROM c WHERE c.Name = 'n'"
        >>> build_query("WHERE c.Name = 'n'", ["Name", "Key"])
        "SELECT c.Name, c.Key FROM c WHERE c.Name = 'n'"
    """
    if columns:
        select = "SELECT " + ", ".join(f"c.{validate_field_name(col)}" for col in columns)
    else:
        select = "SELECT *"

    text = (query or "").strip()
    if not text:
        return f"{select} FROM c"

    if _SELECT.match(text):
        if columns:
            raise InvalidQueryError(
                "Columns cannot be combined with a full SELECT statement", query=text
            )
        return text

    if not _CLAUSE.match(text):
        text = f"WHERE {text}"
    return f"{select} FROM c {text}"


async def invoke_callback(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class EntityPager(Generic[T]):
    """Lazy, finite sequence of entities backed by a paged query.

    Each iteration re-runs the query. Pages are fetched only as the consumer
    advances, so breaking out early leaves the remaining pages unfetched.
    """

    def __init__(self, pages: PageSource, entity_type: Type[T]):
        self._pages = pages
        self._entity_type = entity_type

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        async with contextlib.aclosing(self._pages()) as pages:
            async for page in pages:
                for document in page:
                    yield from_document(self._entity_type, document)

    async def by_page(self) -> AsyncIterator[List[T]]:
        """Iterate materialized pages instead of single entities."""
        async with contextlib.aclosing(self._pages()) as pages:
            async for page in pages:
                yield [from_document(self._entity_type, document) for document in page]

    async def first(self) -> T:
        """Return the first entity.

        Raises:
            NoElementError: If the query matched nothing
        """
        iterator = self._iterate()
        try:
            async for entity in iterator:
                return entity
        finally:
            await iterator.aclose()
        raise NoElementError()

    async def first_or_none(self) -> Optional[T]:
        """Return the first entity, or None if the query matched nothing."""
        try:
            return await self.first()
        except NoElementError:
            return None

    async def to_list(self) -> List[T]:
        return [entity async for entity in self]

    async def count(self) -> int:
        total = 0
        async for page in self._pages():
            total += len(page)
        return total


class Subscription:
    """Handle for a running EntityStream subscription."""

    def __init__(self, task: "asyncio.Task[None]"):
        self._task = task
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def done(self) -> bool:
        """True once the stream completed, failed, or was disposed."""
        return self._task.done()

    def dispose(self) -> None:
        """Stop the subscription. No further notifications are delivered."""
        if self._disposed:
            return
        self._disposed = True
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the subscription has terminated."""
        await asyncio.wait({self._task})


class EntityStream(Generic[T]):
    """Push-based stream of query results.

    Every subscriber gets its own run of the query. Notifications are one
    ``on_next`` per entity followed by ``on_completed``; a failure calls
    ``on_error`` instead. Callbacks may be plain functions or coroutine
    functions.
    """

    def __init__(self, pager: EntityPager[T]):
        self._pager = pager

    def subscribe(
        self,
        on_next: Callable[[T], Any],
        on_error: Optional[Callable[[BaseException], Any]] = None,
        on_completed: Optional[Callable[[], Any]] = None,
    ) -> Subscription:
        """Start delivering entities on the running event loop.

        Raises:
            RuntimeError: If called without a running event loop
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(on_next, on_error, on_completed))
        return Subscription(task)

    async def _run(
        self,
        on_next: Callable[[T], Any],
        on_error: Optional[Callable[[BaseException], Any]],
        on_completed: Optional[Callable[[], Any]],
    ) -> None:
        try:
            async for entity in self._pager:
                await invoke_callback(on_next, entity)
        except asyncio.CancelledError:
            logger.debug("Entity stream subscription disposed")
            raise
        except Exception as e:
            if on_error is None:
                logger.error(f"Entity stream failed with no error handler: {e}", exc_info=True)
            else:
                await invoke_callback(on_error, e)
            return

        if on_completed is not None:
            await invoke_callback(on_completed)
