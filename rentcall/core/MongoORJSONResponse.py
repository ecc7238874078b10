from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

import orjson
from bson import ObjectId
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, field_serializer
from pydantic_core import core_schema


class PyObjectId(ObjectId):
    @classmethod
    def __get_pydantic_core_schema__(cls, source_type, handler):
        return core_schema.no_info_after_validator_function(
            cls.validate,
            core_schema.union_schema([
                core_schema.str_schema(),
                core_schema.is_instance_schema(ObjectId),
            ]),
        )

    @classmethod
    def validate(cls, v: Any) -> ObjectId:
        if isinstance(v, ObjectId):
            return v
        if isinstance(v, str) and ObjectId.is_valid(v):
            return ObjectId(v)
        raise ValueError("Invalid ObjectId")

    @classmethod
    def __get_pydantic_json_schema__(cls, schema, handler):
        return {"type": "string"}


class MongoModel(BaseModel):
    model_config = {
        "populate_by_name": True,
        "arbitrary_types_allowed": True,
        "extra": "ignore",
    }

    @field_serializer("*", when_used="json", check_fields=False)
    def serialize_objectid(cls, value):
        if isinstance(value, ObjectId):
            return str(value)
        return value


def bson_default(obj: Any) -> Any:
    """Convert BSON and model types orjson does not know into JSON-safe values."""
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return bson_default(obj.model_dump(by_alias=True))
    if is_dataclass(obj) and not isinstance(obj, type):
        return bson_default(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): bson_default(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [bson_default(i) for i in obj]
    return obj


# -------------------------------------------------------------------
# ORJSONResponse for FastAPI that accepts Mongo documents as-is
# -------------------------------------------------------------------
class MongoORJSONResponse(ORJSONResponse):
    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return orjson.dumps(bson_default(content))
