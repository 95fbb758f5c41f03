"""Batch operations and correlation of batch responses.

A batch bundles up to 30 heterogeneous operations in one request. Each
operation is tagged with a correlation id (``bId1``, ``bId2``, ...) and the
provider answers with a list of items tagged with the same ids, possibly
leaving some out. This module holds the pure parts: the operation and result
types, the request body, response decoding and reconciliation. Sending the
batch lives in the sync and async clients.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from qbopy.config import ClientConfig
from qbopy.exceptions import QBOBatchPartialFailure, QBODecodeError
from qbopy.models import Fault, QueryResponse

logger = logging.getLogger(__name__)


class BatchOperationKind(str, Enum):
    QUERY = "query"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class BatchOperation(BaseModel):
    """One operation of a batch request.

    Build with the ``query``, ``create``, ``update`` and ``delete``
    constructors. Immutable once built.
    """

    model_config = ConfigDict(frozen=True)

    kind: BatchOperationKind
    statement: str | None = None
    entity: str | None = None
    resource: dict[str, Any] | None = None

    @classmethod
    def query(cls, statement: str) -> BatchOperation:
        return cls(kind=BatchOperationKind.QUERY, statement=statement)

    @classmethod
    def create(cls, entity: str, resource: dict[str, Any] | BaseModel) -> BatchOperation:
        return cls._command(BatchOperationKind.CREATE, entity, resource)

    @classmethod
    def update(cls, entity: str, resource: dict[str, Any] | BaseModel) -> BatchOperation:
        return cls._command(BatchOperationKind.UPDATE, entity, resource)

    @classmethod
    def delete(cls, entity: str, resource: dict[str, Any] | BaseModel) -> BatchOperation:
        return cls._command(BatchOperationKind.DELETE, entity, resource)

    @classmethod
    def _command(
        cls,
        kind: BatchOperationKind,
        entity: str,
        resource: dict[str, Any] | BaseModel,
    ) -> BatchOperation:
        if isinstance(resource, BaseModel):
            resource = resource.model_dump(by_alias=True, exclude_none=True, mode="json")
        return cls(kind=kind, entity=entity, resource=dict(resource))

    def to_payload(self) -> dict[str, Any]:
        """Operation-specific fields of a ``BatchItemRequest`` entry."""
        if self.kind is BatchOperationKind.QUERY:
            return {"Query": self.statement}
        return {"operation": self.kind.value, self.entity: self.resource}


class ResourceResult(BaseModel):
    """A created, updated or deleted entity returned for one operation."""

    entity: str
    resource: dict[str, Any]


class QueryResult(BaseModel):
    """The result of a query operation."""

    response: QueryResponse


class FaultResult(BaseModel):
    """The provider rejected one operation of the batch."""

    fault: Fault


BatchItemResult = Union[ResourceResult, QueryResult, FaultResult]


def assign_batch_ids(operations: Sequence[BatchOperation]) -> dict[str, BatchOperation]:
    """Tag operations with ``bId1``..``bIdN`` in submission order."""
    correlated = {f"bId{index}": op for index, op in enumerate(operations, start=1)}
    logger.debug("Assigned batch ids %s", ", ".join(correlated))
    return correlated


def build_batch_body(correlated: dict[str, BatchOperation]) -> dict[str, Any]:
    """Composite ``BatchItemRequest`` body for the correlated operations."""
    return {
        "BatchItemRequest": [
            {"bId": b_id, **op.to_payload()} for b_id, op in correlated.items()
        ]
    }


def parse_batch_item(item: Any) -> tuple[str, BatchItemResult]:
    """Decode one ``BatchItemResponse`` entry into its id and result variant.

    The variant is chosen by which key is present: ``Fault``, then
    ``QueryResponse``, otherwise the single entity key.

    Raises:
        QBODecodeError: If the entry has no id or matches no variant
    """
    if not isinstance(item, dict) or not isinstance(item.get("bId"), str):
        raise QBODecodeError(f"Batch response item without bId: {item!r}")
    b_id = item["bId"]
    try:
        if "Fault" in item:
            return b_id, FaultResult(fault=Fault.model_validate(item["Fault"]))
        if "QueryResponse" in item:
            return b_id, QueryResult(
                response=QueryResponse.model_validate(item["QueryResponse"])
            )
        entities = [key for key in item if key != "bId"]
        if len(entities) == 1 and isinstance(item[entities[0]], dict):
            return b_id, ResourceResult(entity=entities[0], resource=item[entities[0]])
    except ValidationError as e:
        raise QBODecodeError(f"Malformed batch response item {b_id}: {e}") from e
    raise QBODecodeError(f"Unrecognized batch response item {b_id}: keys {sorted(item)}")


def parse_batch_response(data: Any) -> list[tuple[str, BatchItemResult]]:
    """Decode a batch response body into (id, result) pairs in response order."""
    if not isinstance(data, dict) or not isinstance(data.get("BatchItemResponse"), list):
        raise QBODecodeError("Batch response has no BatchItemResponse list")
    return [parse_batch_item(item) for item in data["BatchItemResponse"]]


def reconcile(
    correlated: dict[str, BatchOperation],
    items: list[tuple[str, BatchItemResult]],
) -> list[tuple[BatchOperation, BatchItemResult]]:
    """Pair each response item with the operation that carried its id.

    Pairs follow response order. Ids the response does not mention are never
    dropped silently.

    Raises:
        QBOBatchPartialFailure: If any submitted operation got no response item
    """
    pending = dict(correlated)
    results: list[tuple[BatchOperation, BatchItemResult]] = []
    for b_id, result in items:
        operation = pending.pop(b_id, None)
        if operation is None:
            logger.warning("Ignoring batch response item with unknown or repeated id %s", b_id)
            continue
        results.append((operation, result))

    if pending:
        raise QBOBatchPartialFailure(missing=pending, partial=results)
    return results


def check_batch_size(operations: Sequence[BatchOperation]) -> None:
    """Warn about batches the provider is likely to reject."""
    if len(operations) > ClientConfig.MAX_BATCH_SIZE:
        logger.warning(
            "Batch of %d operations exceeds the provider limit of %d; chunk it before submitting",
            len(operations),
            ClientConfig.MAX_BATCH_SIZE,
        )
