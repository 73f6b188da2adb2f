from typing import List

from pydantic import BaseModel, ConfigDict, Field

from core.serialization import BsonDocument, BsonUpdate


class CollectionRequest(BaseModel):
    collection: str = Field(min_length=1)
    options: BsonDocument = Field(default_factory=dict)


class FindRequest(CollectionRequest):
    filter: BsonDocument = Field(default_factory=dict)


class FindOneRequest(FindRequest):
    pass


class CountRequest(FindRequest):
    pass


class InsertOneRequest(CollectionRequest):
    document: BsonDocument


class InsertManyRequest(CollectionRequest):
    documents: List[BsonDocument]


class UpdateRequest(CollectionRequest):
    filter: BsonDocument
    update: BsonUpdate


class DeleteRequest(CollectionRequest):
    filter: BsonDocument


class CreateIndexRequest(CollectionRequest):
    keys: str | BsonDocument


class DropIndexRequest(CollectionRequest):
    index: str | BsonDocument


class ErrorDebug(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    stack: str | None = None
    name: str
    timestamp: str
    request_id: str = Field(alias="requestId")


class ErrorResponse(BaseModel):
    error: str
    debug: ErrorDebug | None = None
