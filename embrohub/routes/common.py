import json
from typing import Any, Dict, List, Tuple, Type, TypeVar

import pydantic
from fastapi import Request
from starlette.datastructures import UploadFile

from ..config import settings
from ..exceptions import ValidationError


M = TypeVar("M", bound=pydantic.BaseModel)

# multipart fields that carry JSON
_JSON_FIELDS = {"files", "pendingFiles", "customSizes", "items"}


def ok(**payload) -> dict:
    return {"success": True, **payload}


def parse_model(model: Type[M], data: Dict[str, Any]) -> M:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid input"))


async def read_upload(value: UploadFile) -> Dict[str, Any]:
    content = await value.read()
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(f"File {value.filename} is too large")
    return {"filename": value.filename, "content": content, "content_type": value.content_type}


async def read_body(request: Request) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Form fields and uploaded files of a multipart request, or the JSON body and no files."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        data: Dict[str, Any] = {}
        uploads: List[Dict[str, Any]] = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                uploads.append(await read_upload(value))
            elif key in _JSON_FIELDS and value:
                try:
                    data[key] = json.loads(value)
                except ValueError:
                    raise ValidationError(f"{key} must be valid JSON")
            else:
                data[key] = value
        return data, uploads

    raw = await request.body()
    if not raw:
        return {}, []
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body, []
