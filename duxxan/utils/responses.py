from typing import Any, Iterable, Type

from pydantic import BaseModel


def ok(data: Any = None, message: str = "") -> dict:
    return {"success": True, "message": message, "data": data}


def fail(message: str, data: Any = None) -> dict:
    return {"success": False, "message": message, "data": data}


def dump(schema: Type[BaseModel], obj: Any) -> dict:
    """ORM object -> JSON-ready dict (amounts stay strings)"""
    return schema.model_validate(obj).model_dump(mode="json")


def dump_list(schema: Type[BaseModel], objs: Iterable[Any]) -> list:
    return [dump(schema, obj) for obj in objs]
