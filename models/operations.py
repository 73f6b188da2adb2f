from enum import Enum
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from core.constants.main_values import TRANSACTION_READ_PREFERENCE
from core.serialization import BsonDocument, BsonUpdate


class OperationType(str, Enum):
    INSERT_ONE = "insertOne"
    FIND_ONE_AND_UPDATE = "findOneAndUpdate"
    DELETE_ONE = "deleteOne"


# --- Request side ---

class OperationDescriptor(BaseModel):
    """One entry of a transaction batch as the client sent it."""

    type: OperationType
    collection: str = Field(min_length=1)
    filter: BsonDocument | None = None
    document: BsonDocument | None = None
    update: BsonUpdate | None = None
    options: BsonDocument = Field(default_factory=dict)


ReadPreferenceName = Literal[
    "primary", "primaryPreferred", "secondary", "secondaryPreferred", "nearest"
]


class ReadConcernOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["local", "majority", "snapshot"]


class WriteConcernOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    w: int | str | None = None
    j: bool | None = None
    wtimeout: int | None = Field(default=None, ge=0)


class TransactionOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    read_preference: ReadPreferenceName = Field(
        default=TRANSACTION_READ_PREFERENCE, alias="readPreference"
    )
    read_concern: ReadConcernOptions | None = Field(default=None, alias="readConcern")
    write_concern: WriteConcernOptions | None = Field(default=None, alias="writeConcern")
    max_commit_time_ms: int | None = Field(default=None, gt=0, alias="maxCommitTimeMS")


class TransactionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operations: List[OperationDescriptor]
    transaction_options: TransactionOptions = Field(
        default_factory=TransactionOptions, alias="transactionOptions"
    )


# --- Validated operations ---

class InsertOne(BaseModel):
    type: Literal[OperationType.INSERT_ONE] = OperationType.INSERT_ONE
    collection: str
    document: Dict[str, Any]
    options: Dict[str, Any] = Field(default_factory=dict)


class FindOneAndUpdate(BaseModel):
    type: Literal[OperationType.FIND_ONE_AND_UPDATE] = OperationType.FIND_ONE_AND_UPDATE
    collection: str
    filter: Dict[str, Any]
    update: Dict[str, Any] | List[Dict[str, Any]]
    options: Dict[str, Any] = Field(default_factory=dict)


class DeleteOne(BaseModel):
    type: Literal[OperationType.DELETE_ONE] = OperationType.DELETE_ONE
    collection: str
    filter: Dict[str, Any]
    options: Dict[str, Any] = Field(default_factory=dict)


Operation = Union[InsertOne, FindOneAndUpdate, DeleteOne]


class TransactionBatch(BaseModel):
    operations: List[Operation] = Field(min_length=1)
    options: TransactionOptions = Field(default_factory=TransactionOptions)


# --- Results ---

class OperationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: OperationType
    collection: str


class InsertOneResult(OperationResult):
    data: Any = None
    inserted_id: Any = Field(alias="insertedId")


class FindOneAndUpdateResult(OperationResult):
    data: Any = None


class DeleteOneResult(OperationResult):
    deleted_count: int = Field(alias="deletedCount")
