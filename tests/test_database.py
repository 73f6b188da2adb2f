import asyncio
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from pymongo import ReturnDocument
from pymongo.errors import OperationFailure
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import ReadPreference
from pymongo.write_concern import WriteConcern

from core.config import Settings
from core.database import (
    CURSOR_OPTION_NAMES,
    WRITE_OPTION_NAMES,
    MongoStore,
    driver_options,
    key_list,
    transaction_kwargs,
    with_default_read_preference,
)
from core.errors import InitializationError, StoreError
from core.transactions import run_transaction
from core.validation import validate_transaction
from models.operations import TransactionOptions, TransactionRequest


@pytest.mark.parametrize("url, expected", [
    ("mongodb://localhost:27017", "mongodb://localhost:27017/?readPreference=secondaryPreferred"),
    ("mongodb://localhost:27017/", "mongodb://localhost:27017/?readPreference=secondaryPreferred"),
    ("mongodb://a:1,b:2/?replicaSet=rs0",
     "mongodb://a:1,b:2/?replicaSet=rs0&readPreference=secondaryPreferred"),
    ("mongodb://localhost/?readPreference=primary", "mongodb://localhost/?readPreference=primary"),
    ("mongodb://localhost/?readpreference=nearest", "mongodb://localhost/?readpreference=nearest"),
])
def test_with_default_read_preference(url, expected):
    assert with_default_read_preference(url) == expected


def test_key_list_orders_mapping():
    assert key_list({"b": 1, "a": -1}) == [("b", 1), ("a", -1)]
    assert key_list("name_1") == "name_1"


def test_driver_options_for_cursors():
    options = {
        "maxTimeMS": 500,
        "sort": {"created": -1},
        "limit": 10,
        "projection": {"name": 1},
        "session": "ignored",
    }
    assert driver_options(options, CURSOR_OPTION_NAMES) == {
        "max_time_ms": 500,
        "sort": [("created", -1)],
        "limit": 10,
        "projection": {"name": 1},
    }


def test_driver_options_for_writes():
    options = {"arrayFilters": [{"x.a": 1}], "upsert": True, "returnDocument": "before"}
    assert driver_options(options, WRITE_OPTION_NAMES) == {
        "array_filters": [{"x.a": 1}],
        "upsert": True,
    }


def test_driver_options_pass_through_command_arguments():
    assert driver_options({"maxTimeMS": 100, "hint": {"a": 1}}) == {"maxTimeMS": 100, "hint": [("a", 1)]}
    assert driver_options(None) == {}


def test_transaction_kwargs_default_to_primary():
    assert transaction_kwargs(TransactionOptions()) == {"read_preference": ReadPreference.PRIMARY}


def test_transaction_kwargs_full():
    options = TransactionOptions.model_validate({
        "readPreference": "nearest",
        "readConcern": {"level": "majority"},
        "writeConcern": {"w": 2, "j": True},
        "maxCommitTimeMS": 250,
    })
    kwargs = transaction_kwargs(options)

    assert kwargs["read_preference"] == ReadPreference.NEAREST
    assert kwargs["read_concern"] == ReadConcern("majority")
    assert kwargs["write_concern"] == WriteConcern(w=2, j=True)
    assert kwargs["max_commit_time_ms"] == 250


@pytest.mark.parametrize("settings, message", [
    (Settings(db_name="testdb"), "MONGODB_URL is not set"),
    (Settings(mongodb_url="mongodb://localhost:27017"), "DB_NAME is not set"),
])
def test_connect_requires_configuration(settings, message):
    with pytest.raises(InitializationError) as exc_info:
        asyncio.run(MongoStore.connect(settings))
    assert exc_info.value.message == message


def test_settings_from_env():
    settings = Settings.from_env({
        "MONGODB_URL": "mongodb://db:27017",
        "DB_NAME": "app",
        "AUTH_USERNAME": "u",
        "AUTH_PASSWORD": "p",
        "PORT": "8080",
        "DEBUG": "true",
        "REQUEST_TIMEOUT": "2.5",
        "LOG_LEVEL": "debug",
    })
    assert settings.mongodb_url == "mongodb://db:27017"
    assert settings.db_name == "app"
    assert (settings.auth_username, settings.auth_password) == ("u", "p")
    assert settings.port == 8080
    assert settings.debug is True
    assert settings.request_timeout == 2.5
    assert settings.log_level == "DEBUG"
    assert settings.rate_limit is None


def test_settings_defaults():
    settings = Settings.from_env({})
    assert settings.mongodb_url is None
    assert settings.auth_username == "admin"
    assert settings.auth_password == "password"
    assert settings.port == 3000
    assert settings.debug is False
    assert settings.request_timeout == 10.0


# --- MongoStore against a mocked motor client ---


def _cursor(documents):
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=documents)
    return cursor


@pytest.fixture
def mongo():
    """Mock client, database, collection and its primary-read view."""
    collection = MagicMock()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="id1"))
    collection.insert_many = AsyncMock(return_value=MagicMock(inserted_ids=["id1", "id2"]))
    collection.find_one_and_update = AsyncMock(return_value={"_id": "id1", "value": 2})
    collection.update_many = AsyncMock(return_value=MagicMock(modified_count=2))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))

    primary = MagicMock()
    primary.find_one = AsyncMock(return_value={"_id": "id1", "value": 1})
    collection.with_options.return_value = primary

    db = MagicMock()
    db.__getitem__.return_value = collection
    db.command = AsyncMock(return_value={"ok": 1.0})

    transaction = MagicMock()
    transaction.__aenter__.return_value = transaction
    transaction.__aexit__.return_value = False

    session = MagicMock()
    session.__aenter__.return_value = session
    session.__aexit__.return_value = False
    session.start_transaction.return_value = transaction

    client = MagicMock()
    client.__getitem__.return_value = db
    client.start_session = AsyncMock(return_value=session)

    return {
        "store": MongoStore(client, "testdb"),
        "client": client,
        "db": db,
        "collection": collection,
        "primary": primary,
        "session": session,
        "transaction": transaction,
    }


def _batch(operations):
    return validate_transaction(TransactionRequest.model_validate({"operations": operations}))


def test_transaction_runs_every_call_in_one_session(mongo):
    batch = _batch([
        {"type": "insertOne", "collection": "c", "document": {"value": 1}},
        {"type": "findOneAndUpdate", "collection": "c", "filter": {"_id": "id1"}, "update": {"$inc": {"value": 1}}},
        {"type": "deleteOne", "collection": "c", "filter": {"_id": "id1"}},
    ])

    results, operation_count = asyncio.run(run_transaction(mongo["store"], batch))

    session = mongo["session"]
    collection = mongo["collection"]
    assert operation_count == 3
    assert [result.model_dump(by_alias=True)["collection"] for result in results] == ["c", "c", "c"]

    mongo["client"].start_session.assert_awaited_once()
    session.start_transaction.assert_called_once_with(read_preference=ReadPreference.PRIMARY)
    assert collection.insert_one.call_args.kwargs["session"] is session
    assert mongo["primary"].find_one.call_args == call({"_id": "id1"}, session=session)
    assert collection.find_one_and_update.call_args.kwargs["session"] is session
    assert collection.find_one_and_update.call_args.kwargs["return_document"] == ReturnDocument.AFTER
    assert collection.delete_one.call_args.kwargs["session"] is session

    assert mongo["transaction"].__aexit__.call_args.args == (None, None, None)
    session.__aexit__.assert_awaited_once()


def test_transaction_aborts_when_an_operation_fails(mongo):
    mongo["collection"].delete_one.side_effect = OperationFailure("write conflict")
    batch = _batch([
        {"type": "insertOne", "collection": "c", "document": {"value": 1}},
        {"type": "deleteOne", "collection": "c", "filter": {"_id": "id1"}},
    ])

    with pytest.raises(StoreError) as exc_info:
        asyncio.run(run_transaction(mongo["store"], batch))

    assert exc_info.value.context["stage"] == "operation 1 (deleteOne on 'c')"
    mongo["client"].start_session.assert_awaited_once()
    assert mongo["transaction"].__aexit__.call_args.args[0] is OperationFailure
    session_exit = mongo["session"].__aexit__
    session_exit.assert_awaited_once()
    assert session_exit.call_args.args[0] is OperationFailure


def test_insert_one_reads_back_from_primary(mongo):
    inserted_id, stored = asyncio.run(mongo["store"].insert_one("c", {"value": 1}))

    assert inserted_id == "id1"
    assert stored == {"_id": "id1", "value": 1}
    mongo["collection"].with_options.assert_called_with(read_preference=ReadPreference.PRIMARY)
    mongo["primary"].find_one.assert_awaited_once_with({"_id": "id1"}, session=None)


def test_insert_many_reads_back_from_primary(mongo):
    mongo["primary"].find.return_value = _cursor([{"_id": "id1"}, {"_id": "id2"}])

    count, stored = asyncio.run(mongo["store"].insert_many("c", [{"n": 1}, {"n": 2}]))

    assert count == 2
    assert len(stored) == 2
    mongo["primary"].find.assert_called_once_with({"_id": {"$in": ["id1", "id2"]}})


def test_find_one_and_update_returns_post_image(mongo):
    document = asyncio.run(mongo["store"].find_one_and_update(
        "c", {"_id": "id1"}, {"$inc": {"value": 1}}, {"arrayFilters": [{"x.a": 1}], "returnDocument": "before"}
    ))

    assert document == {"_id": "id1", "value": 2}
    mongo["collection"].find_one_and_update.assert_awaited_once_with(
        {"_id": "id1"},
        {"$inc": {"value": 1}},
        return_document=ReturnDocument.AFTER,
        session=None,
        array_filters=[{"x.a": 1}],
    )


def test_update_many_collects_ids_before_updating(mongo):
    primary = mongo["primary"]
    primary.find.side_effect = [
        _cursor([{"_id": "a"}, {"_id": "b"}]),
        _cursor([{"_id": "a", "flag": True}, {"_id": "b", "flag": True}]),
    ]

    async def update_many(filter, update, **kwargs):
        assert primary.find.call_count == 1
        return MagicMock(modified_count=2)

    mongo["collection"].update_many = AsyncMock(side_effect=update_many)

    modified_count, documents = asyncio.run(
        mongo["store"].update_many("c", {"type": "batch"}, {"$set": {"flag": True}})
    )

    assert modified_count == 2
    assert all(doc["flag"] is True for doc in documents)
    assert primary.find.call_args_list == [
        call({"type": "batch"}, {"_id": 1}),
        call({"_id": {"$in": ["a", "b"]}}),
    ]
    mongo["collection"].update_many.assert_awaited_once_with({"type": "batch"}, {"$set": {"flag": True}})


def test_drop_index_runs_drop_indexes_command(mongo):
    acknowledged = asyncio.run(mongo["store"].drop_index("c", {"level": -1}))

    assert acknowledged is True
    mongo["db"].command.assert_awaited_once_with("dropIndexes", "c", index={"level": -1})


def test_create_index_orders_keys(mongo):
    mongo["collection"].create_index = AsyncMock(return_value="email_1_name_-1")

    name = asyncio.run(mongo["store"].create_index("c", {"email": 1, "name": -1}, {"unique": True}))

    assert name == "email_1_name_-1"
    mongo["collection"].create_index.assert_awaited_once_with([("email", 1), ("name", -1)], unique=True)
