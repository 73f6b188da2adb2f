import json
from typing import Annotated, Any, Dict, List

from bson import json_util
from bson.binary import Binary
from bson.dbref import DBRef
from bson.decimal128 import Decimal128
from bson.errors import BSONError
from bson.json_util import RELAXED_JSON_OPTIONS
from bson.max_key import MaxKey
from bson.min_key import MinKey
from bson.objectid import ObjectId
from bson.regex import Regex
from bson.timestamp import Timestamp
from fastapi.encoders import jsonable_encoder
from pydantic import BeforeValidator
from starlette.responses import JSONResponse


def to_extended_json(value: Any) -> Any:
    """Relaxed Extended JSON for BSON values that have no plain JSON form."""
    return json_util.default(value, json_options=RELAXED_JSON_OPTIONS)


# ObjectId and Decimal128 go out as plain strings; bytes must not reach
# FastAPI's own encoder, which decodes them as UTF-8.
BSON_ENCODERS = {
    ObjectId: str,
    Decimal128: str,
    Binary: to_extended_json,
    bytes: to_extended_json,
    Regex: to_extended_json,
    Timestamp: to_extended_json,
    MinKey: to_extended_json,
    MaxKey: to_extended_json,
    DBRef: to_extended_json,
}


def from_extended_json(value: Any) -> Any:
    """Decode MongoDB Extended JSON markers such as {"$oid": ...} into BSON types."""
    if not isinstance(value, (dict, list)):
        return value
    try:
        return json_util.loads(json.dumps(value))
    except (BSONError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid extended JSON: {e}") from e


BsonDocument = Annotated[Dict[str, Any], BeforeValidator(from_extended_json)]
BsonUpdate = Annotated[Dict[str, Any] | List[Dict[str, Any]], BeforeValidator(from_extended_json)]


def to_jsonable(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder=BSON_ENCODERS)


class BsonJSONResponse(JSONResponse):
    """JSONResponse that also understands ObjectId, Decimal128, binary data and the other BSON types."""

    def render(self, content: Any) -> bytes:
        return super().render(to_jsonable(content))
