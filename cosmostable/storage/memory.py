"""
In-Memory Cosmos DB Database.

A stand-in for ``azure.cosmos.aio.DatabaseProxy`` and ``ContainerProxy`` that
keeps containers and documents in dictionaries. It exposes the subset of the
SDK surface the table storage client calls, raises the SDK's own exception
types, and understands the SQL subset the client issues:

    SELECT [TOP n] [VALUE] <* | COUNT(1) | c.a, c.b [AS x]> FROM c
        [WHERE <predicate>] [ORDER BY c.field [ASC|DESC]]

Predicates support =, !=, <>, <, >, <=, >=, AND, OR, NOT, parentheses,
string/number/boolean/null literals and @parameters.

Intended for local development and tests; data is lost on process exit.

Author: cosmostable Team
Date: 2026-10-19
"""

import asyncio
import copy
import hashlib
import json
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

DEFAULT_PAGE_SIZE = 100

_QUERY = re.compile(
    r"^\s*SELECT\s+(?:TOP\s+(?P<top>\d+)\s+)?(?P<value>VALUE\s+)?(?P<projection>.+?)"
    r"\s+FROM\s+(?P<alias>[A-Za-z_]\w*)"
    r"(?:\s+WHERE\s+(?P<where>.+?))?"
    r"(?:\s+ORDER\s+BY\s+(?P<order>.+?))?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_COMPARISON = re.compile(r"^(?P<left>.+?)\s*(?P<op>!=|<>|>=|<=|=|>|<)\s*(?P<right>.+)$", re.DOTALL)
_NUMBER = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")
_UNDEFINED = object()


def _bad_request(message: str) -> CosmosHttpResponseError:
    return CosmosHttpResponseError(status_code=400, message=message)


def _not_found(message: str) -> CosmosResourceNotFoundError:
    return CosmosResourceNotFoundError(status_code=404, message=message)


def _partition_token(value: Any) -> str:
    """Stable dictionary key for a partition key value."""
    return json.dumps(value, sort_keys=True)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _split_top_level(text: str, keyword: str) -> List[str]:
    """Split on a keyword outside quotes and parentheses."""
    pattern = re.compile(rf"\s+{keyword}\s+", re.IGNORECASE)
    parts: List[str] = []
    depth = 0
    quote: Optional[str] = None
    start = i = 0

    while i < len(text):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif depth == 0:
            match = pattern.match(text, i)
            if match:
                parts.append(text[start:i])
                start = i = match.end()
                continue
        i += 1

    parts.append(text[start:])
    return [part.strip() for part in parts]


def _strip_parentheses(text: str) -> str:
    """Remove parentheses wrapping the whole expression."""
    while text.startswith("(") and text.endswith(")"):
        depth = 0
        for i, ch in enumerate(text):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0 and i != len(text) - 1:
                    return text
        text = text[1:-1].strip()
    return text


class _SqlQuery:
    """Parsed query over a single container."""

    def __init__(self, query: str, parameters: Optional[List[Dict[str, Any]]] = None):
        match = _QUERY.match(query)
        if not match:
            raise _bad_request(f"Unsupported query: {query}")

        self.alias = match.group("alias")
        self.top = int(match.group("top")) if match.group("top") else None
        self.value = bool(match.group("value"))
        self.projection = match.group("projection").strip()
        self.where = match.group("where")
        self.order = match.group("order")
        self.parameters = {p["name"]: p["value"] for p in parameters or []}

    def execute(self, documents: List[Dict[str, Any]]) -> List[Any]:
        results = documents
        if self.where:
            results = [doc for doc in results if self._evaluate_where_clause(doc, self.where)]

        if self.order:
            results = self._apply_order(results)

        if self.projection.upper().replace(" ", "") == "COUNT(1)":
            count = len(results)
            return [count] if self.value else [{"$1": count}]

        if self.top is not None:
            results = results[:self.top]

        return [self._project(doc) for doc in results]

    def _apply_order(self, documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        parts = self.order.split()
        field = parts[0]
        descending = len(parts) > 1 and parts[1].upper() == "DESC"

        def sort_key(doc: Dict[str, Any]) -> Tuple[int, Any]:
            value = self._resolve(doc, field)
            if value is _UNDEFINED or value is None:
                return (0, "")
            if isinstance(value, bool):
                return (1, value)
            if isinstance(value, (int, float)):
                return (2, value)
            return (3, str(value))

        return sorted(documents, key=sort_key, reverse=descending)

    def _project(self, document: Dict[str, Any]) -> Any:
        if self.projection == "*":
            return copy.deepcopy(document)

        if self.value:
            value = self._resolve(document, self.projection)
            return None if value is _UNDEFINED else copy.deepcopy(value)

        projected: Dict[str, Any] = {}
        for item in self.projection.split(","):
            parts = re.split(r"\s+AS\s+", item.strip(), maxsplit=1, flags=re.IGNORECASE)
            source = parts[0].strip()
            name = parts[1].strip() if len(parts) > 1 else source.split(".")[-1]
            value = self._resolve(document, source)
            if value is not _UNDEFINED:
                projected[name] = copy.deepcopy(value)
        return projected

    def _evaluate_where_clause(self, document: Dict[str, Any], clause: str) -> bool:
        clause = _strip_parentheses(clause.strip())

        alternatives = _split_top_level(clause, "OR")
        if len(alternatives) > 1:
            return any(self._evaluate_where_clause(document, part) for part in alternatives)

        conjuncts = _split_top_level(clause, "AND")
        if len(conjuncts) > 1:
            return all(self._evaluate_where_clause(document, part) for part in conjuncts)

        if clause.upper().startswith("NOT "):
            return not self._evaluate_where_clause(document, clause[4:])

        match = _COMPARISON.match(clause)
        if not match:
            value = self._operand(document, clause)
            return value is True

        left = self._operand(document, match.group("left").strip())
        right = self._operand(document, match.group("right").strip())
        return self._compare(left, match.group("op"), right)

    @staticmethod
    def _compare(left: Any, op: str, right: Any) -> bool:
        if left is _UNDEFINED or right is _UNDEFINED:
            return False

        both_numbers = _is_number(left) and _is_number(right)

        if op in ("=", "!=", "<>"):
            equal = left == right if both_numbers or type(left) is type(right) else False
            return equal if op == "=" else not equal

        if not (both_numbers or (isinstance(left, str) and isinstance(right, str))):
            return False

        if op == ">":
            return left > right
        if op == "<":
            return left < right
        if op == ">=":
            return left >= right
        return left <= right

    def _operand(self, document: Dict[str, Any], token: str) -> Any:
        if token.startswith("@"):
            return self.parameters.get(token, _UNDEFINED)
        if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
            return token[1:-1]
        if _NUMBER.match(token):
            return float(token) if any(c in token for c in ".eE") else int(token)

        lowered = token.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered == "null":
            return None
        return self._resolve(document, token)

    def _resolve(self, document: Dict[str, Any], path: str) -> Any:
        """Resolve ``c.a.b`` against a document; missing fields are undefined."""
        parts = path.strip().split(".")
        if parts[0] == self.alias:
            parts = parts[1:]
        if not parts:
            return document

        value: Any = document
        for part in parts:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return _UNDEFINED
        return value


class _AsyncList:
    """Async iterator over an already materialized page."""

    def __init__(self, items: List[Any]):
        self._items = iter(items)

    def __aiter__(self) -> "_AsyncList":
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._items)
        except StopIteration:
            raise StopAsyncIteration


class InMemoryItemPaged:
    """Mirror of ``azure.core.async_paging.AsyncItemPaged`` for query results.

    The query runs when the first page is requested. Continuation tokens are
    result offsets.
    """

    def __init__(self, fetch: Callable[[], Awaitable[List[Any]]], page_size: Optional[int] = None):
        self._fetch = fetch
        self._page_size = page_size or DEFAULT_PAGE_SIZE

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._items()

    async def _items(self) -> AsyncIterator[Any]:
        async for page in self.by_page():
            async for item in page:
                yield item

    def by_page(self, continuation_token: Optional[str] = None) -> AsyncIterator[_AsyncList]:
        return self._pages(continuation_token)

    async def _pages(self, continuation_token: Optional[str]) -> AsyncIterator[_AsyncList]:
        results = await self._fetch()
        start = int(continuation_token) if continuation_token else 0

        while True:
            end = start + self._page_size
            yield _AsyncList(results[start:end])
            if end >= len(results):
                return
            start = end


class InMemoryContainer:
    """Container proxy backed by an InMemoryDatabase."""

    def __init__(self, database: "InMemoryDatabase", container_id: str):
        self._database = database
        self.id = container_id

    async def read(self, **kwargs: Any) -> Dict[str, Any]:
        async with self._database._lock:
            return copy.deepcopy(self._database._properties_unlocked(self.id))

    async def upsert_item(self, body: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        return await self._database._upsert(self.id, body)

    async def read_item(self, item: str, partition_key: Any, **kwargs: Any) -> Dict[str, Any]:
        return await self._database._read(self.id, item, partition_key)

    async def delete_item(self, item: str, partition_key: Any, **kwargs: Any) -> None:
        await self._database._delete(self.id, item, partition_key)

    def query_items(
        self,
        query: str,
        parameters: Optional[List[Dict[str, Any]]] = None,
        partition_key: Optional[Any] = None,
        max_item_count: Optional[int] = None,
        **kwargs: Any,
    ) -> InMemoryItemPaged:
        async def fetch() -> List[Any]:
            return await self._database._query(self.id, query, parameters, partition_key)

        return InMemoryItemPaged(fetch, max_item_count)


class InMemoryDatabase:
    """Database proxy storing containers and documents in memory.

    Storage structure:
        _containers: {container_id: container properties}
        _documents: {container_id: {(partition token, doc id): document}}

    Thread-safe with an asyncio lock for concurrent operations.
    """

    def __init__(self, database_id: str = "Test"):
        self.id = database_id
        self._containers: Dict[str, Dict[str, Any]] = {}
        self._documents: Dict[str, Dict[Tuple[str, str], Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _generate_resource_id(self, resource_type: str, identifier: str) -> str:
        hash_input = f"{resource_type}:{identifier}:{time.time()}"
        return hashlib.sha256(hash_input.encode()).hexdigest()[:8]

    def _generate_timestamp(self) -> int:
        return int(datetime.now(timezone.utc).timestamp())

    def _properties_unlocked(self, container_id: str) -> Dict[str, Any]:
        if container_id not in self._containers:
            raise _not_found(f"Container with id '{container_id}' not found in database '{self.id}'")
        return self._containers[container_id]

    def _partition_value(self, container_id: str, document: Dict[str, Any]) -> Any:
        path = self._containers[container_id]["partitionKey"]["paths"][0]
        value: Any = document
        for part in path.strip("/").split("/"):
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        return value

    async def read(self, **kwargs: Any) -> Dict[str, Any]:
        return {"id": self.id}

    async def create_container_if_not_exists(
        self, id: str, partition_key: Any, **kwargs: Any
    ) -> InMemoryContainer:
        """Create a container, or return the existing one with the same id."""
        paths = list(partition_key["paths"])
        for path in paths:
            if not path.startswith("/"):
                raise _bad_request(f"Partition key path must start with '/': {path}")

        async with self._lock:
            if id not in self._containers:
                rid = self._generate_resource_id("coll", id)
                self._containers[id] = {
                    "id": id,
                    "partitionKey": {"paths": paths, "kind": "Hash"},
                    "_rid": rid,
                    "_ts": self._generate_timestamp(),
                    "_self": f"dbs/{self.id}/colls/{rid}/",
                    "_etag": f'"{rid}"',
                }
                self._documents[id] = {}
        return InMemoryContainer(self, id)

    def get_container_client(self, container: str) -> InMemoryContainer:
        return InMemoryContainer(self, container)

    def list_containers(self, **kwargs: Any) -> InMemoryItemPaged:
        async def fetch() -> List[Any]:
            async with self._lock:
                return [copy.deepcopy(props) for props in self._containers.values()]

        return InMemoryItemPaged(fetch)

    async def delete_container(self, container: str, **kwargs: Any) -> None:
        async with self._lock:
            self._properties_unlocked(container)
            del self._containers[container]
            del self._documents[container]

    async def _upsert(self, container_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            container = self._properties_unlocked(container_id)

            document_data = copy.deepcopy(body)
            if not document_data.get("id"):
                document_data["id"] = str(uuid.uuid4())
            doc_id = str(document_data["id"])
            if "/" in doc_id:
                raise _bad_request(f"Document id cannot contain '/': {doc_id}")

            slot = (_partition_token(self._partition_value(container_id, document_data)), doc_id)
            existing = self._documents[container_id].get(slot)
            rid = existing["_rid"] if existing else self._generate_resource_id("doc", doc_id)

            document = {
                **document_data,
                "_rid": rid,
                "_ts": self._generate_timestamp(),
                "_self": f"{container['_self']}docs/{rid}/",
                "_etag": f'"{uuid.uuid4().hex[:16]}"',
                "_attachments": "attachments/",
            }
            self._documents[container_id][slot] = document
            return copy.deepcopy(document)

    async def _read(self, container_id: str, item: str, partition_key: Any) -> Dict[str, Any]:
        async with self._lock:
            self._properties_unlocked(container_id)
            document = self._documents[container_id].get((_partition_token(partition_key), item))
            if document is None:
                raise _not_found(
                    f"Document with id '{item}' and partition key '{partition_key}' not found"
                )
            return copy.deepcopy(document)

    async def _delete(self, container_id: str, item: str, partition_key: Any) -> None:
        async with self._lock:
            self._properties_unlocked(container_id)
            slot = (_partition_token(partition_key), item)
            if slot not in self._documents[container_id]:
                raise _not_found(
                    f"Document with id '{item}' and partition key '{partition_key}' not found"
                )
            del self._documents[container_id][slot]

    async def _query(
        self,
        container_id: str,
        query: str,
        parameters: Optional[List[Dict[str, Any]]],
        partition_key: Optional[Any],
    ) -> List[Any]:
        parsed = _SqlQuery(query, parameters)

        async with self._lock:
            self._properties_unlocked(container_id)
            documents = [
                doc for (token, _), doc in self._documents[container_id].items()
                if partition_key is None or token == _partition_token(partition_key)
            ]
            return parsed.execute(documents)
