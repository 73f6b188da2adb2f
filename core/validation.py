"""
Request validation.

Bodies are first checked against their pydantic schema. Transaction batches
get a second, type-conditional pass so that a batch with a malformed entry
is rejected as a whole before anything touches the database.
"""

from typing import Any, Dict, Iterable, List, Sequence, Tuple, Type

from pydantic import BaseModel

from core.errors import ValidationError
from models.operations import (
    DeleteOne,
    FindOneAndUpdate,
    InsertOne,
    Operation,
    OperationDescriptor,
    OperationType,
    TransactionBatch,
    TransactionRequest,
)

EMPTY_BATCH_MESSAGE = "At least one operation is required"

REQUIRED_FIELDS: Dict[OperationType, Tuple[str, ...]] = {
    OperationType.INSERT_ONE: ("document",),
    OperationType.FIND_ONE_AND_UPDATE: ("filter", "update"),
    OperationType.DELETE_ONE: ("filter",),
}

_OPERATION_MODELS: Dict[OperationType, Type[BaseModel]] = {
    OperationType.INSERT_ONE: InsertOne,
    OperationType.FIND_ONE_AND_UPDATE: FindOneAndUpdate,
    OperationType.DELETE_ONE: DeleteOne,
}


def format_error_path(loc: Sequence[Any]) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] == "body":
        parts = parts[1:]
    return ".".join(parts) or "body"


def format_errors(errors: Iterable[Dict[str, Any]]) -> str:
    details = ", ".join(f"{format_error_path(error['loc'])}: {error['msg']}" for error in errors)
    return f"Validation error: {details}"


def missing_fields(descriptor: OperationDescriptor, fields: Iterable[str]) -> List[str]:
    return [field for field in fields if getattr(descriptor, field) is None]


def _requirement_message(index: int, operation_type: OperationType) -> str:
    fields = REQUIRED_FIELDS[operation_type]
    if len(fields) == 1:
        field_text = f"{fields[0]} field"
    else:
        field_text = " and ".join(fields) + " fields"
    return f"Operation {index}: {operation_type.value} requires {field_text}"


def to_operation(index: int, descriptor: OperationDescriptor) -> Operation:
    if missing_fields(descriptor, REQUIRED_FIELDS[descriptor.type]):
        raise ValidationError(_requirement_message(index, descriptor.type))

    model = _OPERATION_MODELS[descriptor.type]
    values = {
        field: getattr(descriptor, field)
        for field in ("collection", "options", *REQUIRED_FIELDS[descriptor.type])
    }
    return model(**values)


def validate_transaction(request: TransactionRequest) -> TransactionBatch:
    """
    Turn a schema-valid transaction request into an executable batch.

    Every descriptor is checked before any is returned; the first descriptor
    missing a field its type requires fails the whole batch.
    """
    if not request.operations:
        raise ValidationError(EMPTY_BATCH_MESSAGE)

    operations = [
        to_operation(index, descriptor)
        for index, descriptor in enumerate(request.operations)
    ]
    return TransactionBatch(operations=operations, options=request.transaction_options)
