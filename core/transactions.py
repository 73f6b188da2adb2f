"""
Multi-operation transactions.

A validated TransactionBatch is executed in order inside a single client
session and transaction. Either every operation's effect is committed and
one result per operation is returned, or the transaction is aborted and a
single StoreError is raised.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from pymongo.errors import PyMongoError

from core.errors import StoreError
from models.operations import (
    DeleteOne,
    DeleteOneResult,
    FindOneAndUpdate,
    FindOneAndUpdateResult,
    InsertOne,
    InsertOneResult,
    Operation,
    OperationResult,
    OperationType,
    TransactionBatch,
)

logger = logging.getLogger("docgate.transactions")

Executor = Callable[[Any, Any, Any], Awaitable[OperationResult]]


async def _insert_one(store, operation: InsertOne, session) -> InsertOneResult:
    inserted_id, document = await store.insert_one(
        operation.collection, operation.document, operation.options, session=session
    )
    return InsertOneResult(
        type=operation.type,
        collection=operation.collection,
        data=document,
        inserted_id=inserted_id,
    )


async def _find_one_and_update(store, operation: FindOneAndUpdate, session) -> FindOneAndUpdateResult:
    document = await store.find_one_and_update(
        operation.collection, operation.filter, operation.update, operation.options, session=session
    )
    return FindOneAndUpdateResult(type=operation.type, collection=operation.collection, data=document)


async def _delete_one(store, operation: DeleteOne, session) -> DeleteOneResult:
    deleted_count = await store.delete_one(
        operation.collection, operation.filter, operation.options, session=session
    )
    return DeleteOneResult(type=operation.type, collection=operation.collection, deleted_count=deleted_count)


EXECUTORS: Dict[OperationType, Executor] = {
    OperationType.INSERT_ONE: _insert_one,
    OperationType.FIND_ONE_AND_UPDATE: _find_one_and_update,
    OperationType.DELETE_ONE: _delete_one,
}


async def execute_operation(store, operation: Operation, session) -> OperationResult:
    return await EXECUTORS[operation.type](store, operation, session)


async def run_transaction(store, batch: TransactionBatch) -> Tuple[List[OperationResult], int]:
    """
    Execute `batch` atomically against `store`.

    Returns the per-operation results in input order together with the
    number of operations submitted.
    """
    operation_count = len(batch.operations)
    results: List[OperationResult] = []

    try:
        async with store.transaction(batch.options) as session:
            for operation in batch.operations:
                results.append(await execute_operation(store, operation, session))
    except PyMongoError as e:
        failed_at = len(results)
        if failed_at < operation_count:
            failed = batch.operations[failed_at]
            stage = f"operation {failed_at} ({failed.type.value} on '{failed.collection}')"
        else:
            stage = "commit"
        logger.error(f"Transaction rolled back during {stage}: {e}")
        raise StoreError(
            "Transaction aborted",
            context={"stage": stage, "operation_count": operation_count},
        ) from e

    return results, operation_count


def serialize_results(results: List[OperationResult]) -> List[Dict[str, Any]]:
    return [result.model_dump(by_alias=True) for result in results]
