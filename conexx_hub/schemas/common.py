from typing import Any

from pydantic import BaseModel, ConfigDict


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: Any = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "not_found",
                    "message": "Weekly fee not found",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/weekly-fees/abc123/charge",
                    "details": None,
                }
            }
        }
    )
