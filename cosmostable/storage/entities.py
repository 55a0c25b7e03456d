"""
Entity Conventions.

Key and table-name conventions plus conversion between typed entities and
Cosmos DB documents.

A table may be declared as ``name/PartitionField`` to partition its container
on ``/PartitionField``; otherwise the container is partitioned on ``/id``.
An entity key may be written as ``partitionValue/suffix``, in which case the
document is stored with ``id`` (and key field) equal to ``suffix`` and read
back using ``partitionValue`` as the partition key value.

Author: cosmostable Team
Date: 2026-10-19
"""

import dataclasses
import re
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from .exceptions import InvalidKeyError, InvalidQueryError
from .interface import TableItem

T = TypeVar("T")

DEFAULT_PARTITION_PATH = "/id"

# Document field that holds the entity key when the model uses the default alias
KEY_FIELD = "Key"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_field_name(name: str) -> str:
    """Ensure a field name can be embedded as ``c.<name>`` in a query.

    Raises:
        InvalidQueryError: If the name is not a plain identifier
    """
    if not _IDENTIFIER.match(name or ""):
        raise InvalidQueryError(f"Invalid field name: '{name}'", query=name or "")
    return name


def parse_table_name(table_name: str) -> Tuple[str, str]:
    """Split a table name into container id and partition key path.

    Args:
        table_name: ``table`` or ``table/PartitionField``

    Returns:
        (container id, partition key path)
    """
    container_id, _, partition_field = table_name.partition("/")
    if not container_id:
        raise ValueError("Table name cannot be empty")
    if not partition_field:
        return container_id, DEFAULT_PARTITION_PATH
    return container_id, f"/{validate_field_name(partition_field)}"


def split_key(key: str) -> Tuple[Optional[str], str]:
    """Split a key into (partition value, document id).

    ``"v1/abc"`` gives ``("v1", "abc")``; ``"abc"`` gives ``(None, "abc")``.

    Raises:
        InvalidKeyError: If the key is empty or malformed
    """
    if not key:
        raise InvalidKeyError("Entity key cannot be empty", key=key or "")

    if "/" not in key:
        return None, key

    partition_value, document_id = key.split("/", 1)
    if not partition_value or not document_id or "/" in document_id:
        raise InvalidKeyError(
            f"Key '{key}' must be of the form 'partitionValue/id'", key=key
        )
    return partition_value, document_id


def partition_field(partition_path: str) -> str:
    """Field name of a single-segment partition key path."""
    return partition_path.lstrip("/")


def to_document(entity: TableItem) -> Dict[str, Any]:
    """Serialize an entity into a Cosmos DB document.

    The key convention is applied: a prefixed key is stored as its suffix, and
    ``id`` is always set to the stored key.

    Raises:
        TypeError: If the entity is neither a pydantic model nor a dataclass
        InvalidKeyError: If the entity key is malformed
    """
    if isinstance(entity, BaseModel):
        document = entity.model_dump(by_alias=True, mode="json")
    elif dataclasses.is_dataclass(entity) and not isinstance(entity, type):
        document = dataclasses.asdict(entity)
    else:
        raise TypeError(
            f"Cannot serialize {type(entity).__name__}: expected a pydantic model or dataclass"
        )

    _, document_id = split_key(entity.key)
    key_field = KEY_FIELD if KEY_FIELD in document else "key"
    document[key_field] = document_id
    document["id"] = document_id
    return document


def from_document(entity_type: Type[T], document: Dict[str, Any]) -> T:
    """Materialize a typed entity from a document.

    System properties (``_rid``, ``_etag`` ...) are dropped; fields missing
    from the document keep the type's defaults.
    """
    data = {name: value for name, value in document.items() if not name.startswith("_")}

    if isinstance(entity_type, type) and issubclass(entity_type, BaseModel):
        return entity_type.model_validate(data)

    if dataclasses.is_dataclass(entity_type):
        names = {f.name for f in dataclasses.fields(entity_type) if f.init}
        return entity_type(**{k: v for k, v in data.items() if k in names})

    if entity_type is dict:
        return data  # type: ignore[return-value]

    raise TypeError(f"Cannot deserialize into {entity_type!r}")
