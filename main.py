import logging

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.cors import CORSMiddleware

from core.config import Settings
from core.constants.main_values import API_VERSION, APP_TITLE, APP_VERSION
from core.database import MongoStore
from core.handlers import register_exception_handlers
from core.lifespan import lifespan
from core.middleware import BasicAuthMiddleware, RequestLoggingMiddleware, TimeoutMiddleware
from core.serialization import BsonJSONResponse
from core.transactions import run_transaction, serialize_results
from core.validation import validate_transaction
from models.api import (
    CountRequest,
    CreateIndexRequest,
    DeleteRequest,
    DropIndexRequest,
    FindOneRequest,
    FindRequest,
    InsertManyRequest,
    InsertOneRequest,
    UpdateRequest,
)
from models.operations import TransactionRequest

logger = logging.getLogger("docgate")

router = APIRouter()


def get_store(request: Request) -> MongoStore:
    return request.app.state.store


@router.get("/")
async def root(store: MongoStore = Depends(get_store)):
    await store.ping()
    return BsonJSONResponse({"data": {"message": "MongoDB API is running", "version": API_VERSION}})


@router.post("/v0/find")
async def find_documents(request_data: FindRequest, store: MongoStore = Depends(get_store)):
    documents = await store.find(request_data.collection, request_data.filter, request_data.options)
    return BsonJSONResponse({"data": documents, "count": len(documents)})


@router.post("/v0/find-one")
async def find_one_document(request_data: FindOneRequest, store: MongoStore = Depends(get_store)):
    document = await store.find_one(request_data.collection, request_data.filter, request_data.options)
    return BsonJSONResponse({"data": document})


@router.post("/v0/insert-one")
async def insert_one_document(request_data: InsertOneRequest, store: MongoStore = Depends(get_store)):
    _, document = await store.insert_one(request_data.collection, request_data.document, request_data.options)
    return BsonJSONResponse({"data": document})


@router.post("/v0/insert-many")
async def insert_many_documents(request_data: InsertManyRequest, store: MongoStore = Depends(get_store)):
    inserted_count, documents = await store.insert_many(
        request_data.collection, request_data.documents, request_data.options
    )
    return BsonJSONResponse({"data": documents, "count": inserted_count})


@router.post("/v0/update-one")
async def update_one_document(request_data: UpdateRequest, store: MongoStore = Depends(get_store)):
    document = await store.find_one_and_update(
        request_data.collection, request_data.filter, request_data.update, request_data.options
    )
    return BsonJSONResponse({"data": document})


@router.post("/v0/update-many")
async def update_many_documents(request_data: UpdateRequest, store: MongoStore = Depends(get_store)):
    modified_count, documents = await store.update_many(
        request_data.collection, request_data.filter, request_data.update, request_data.options
    )
    return BsonJSONResponse({"data": documents, "modifiedCount": modified_count})


@router.post("/v0/delete-one")
async def delete_one_document(request_data: DeleteRequest, store: MongoStore = Depends(get_store)):
    deleted_count = await store.delete_one(request_data.collection, request_data.filter, request_data.options)
    return BsonJSONResponse({"deletedCount": deleted_count})


@router.post("/v0/delete-many")
async def delete_many_documents(request_data: DeleteRequest, store: MongoStore = Depends(get_store)):
    deleted_count = await store.delete_many(request_data.collection, request_data.filter, request_data.options)
    return BsonJSONResponse({"deletedCount": deleted_count})


@router.post("/v0/count")
async def count_documents(request_data: CountRequest, store: MongoStore = Depends(get_store)):
    count = await store.count(request_data.collection, request_data.filter, request_data.options)
    return BsonJSONResponse({"count": count})


@router.get("/v0/collections")
async def list_collections(store: MongoStore = Depends(get_store)):
    names = await store.list_collection_names()
    return BsonJSONResponse({"data": names})


@router.post("/v0/create-index")
async def create_index(request_data: CreateIndexRequest, store: MongoStore = Depends(get_store)):
    index_name = await store.create_index(request_data.collection, request_data.keys, request_data.options)
    logger.info(f"Index created: {request_data.collection}.{index_name}")
    return BsonJSONResponse({"data": {"indexName": index_name}})


@router.post("/v0/drop-index")
async def drop_index(request_data: DropIndexRequest, store: MongoStore = Depends(get_store)):
    acknowledged = await store.drop_index(request_data.collection, request_data.index, request_data.options)
    logger.info(f"Index dropped: {request_data.collection}.{request_data.index}")
    return BsonJSONResponse({"data": {"acknowledged": acknowledged}})


@router.post("/v0/transaction")
async def transaction(request_data: TransactionRequest, store: MongoStore = Depends(get_store)):
    batch = validate_transaction(request_data)
    results, operation_count = await run_transaction(store, batch)

    logger.info(
        f"Transaction completed successfully (operations={operation_count}, results={len(results)})"
    )
    return BsonJSONResponse({"data": serialize_results(results), "operationCount": operation_count})


def create_app(settings: Settings | None = None, store: MongoStore | None = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title=APP_TITLE,
        description="REST API over a MongoDB database, with multi-operation transactions",
        version=APP_VERSION,
        lifespan=lifespan,
        default_response_class=BsonJSONResponse,
    )
    app.state.settings = settings
    app.state.store = store

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit] if settings.rate_limit else [],
        enabled=bool(settings.rate_limit),
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    Instrumentator().instrument(app).expose(app)

    # Last added runs first: CORS, logging, timeout, auth, rate limit.
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(BasicAuthMiddleware)
    app.add_middleware(TimeoutMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
    )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    settings = app.state.settings
    print(f"--- Starting {APP_TITLE} ({APP_VERSION}) on http://0.0.0.0:{settings.port} ---")
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        workers=1,
        reload=False,
    )
