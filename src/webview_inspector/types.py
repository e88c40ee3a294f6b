"""Request and response models for the inspector bridge."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, NonNegativeInt, model_validator


class EvalResponse(BaseModel):
    """Outcome of running one script in the webview.

    Exactly one of ``result`` / ``error`` is set, depending on ``success``.
    """

    success: bool
    result: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_outcome(self) -> "EvalResponse":
        if self.success and (self.result is None or self.error is not None):
            raise ValueError("a successful outcome carries a result and no error")
        if not self.success and (self.error is None or self.result is not None):
            raise ValueError("a failed outcome carries an error and no result")
        return self

    @classmethod
    def ok(cls, result: str) -> "EvalResponse":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, message: str) -> "EvalResponse":
        return cls(success=False, error=message)


class EvalRequest(BaseModel):
    script: str = Field(min_length=1)


class QueryRequest(BaseModel):
    selector: str = Field(min_length=1)
    property: str = Field(default="text", min_length=1)


class InspectRequest(BaseModel):
    selector: str = Field(min_length=1)


class ValidateClassesRequest(BaseModel):
    classes: list[str]


class ScreenshotRequest(BaseModel):
    path: Optional[str] = None


class ScreenshotResponse(BaseModel):
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None


class ResizeRequest(BaseModel):
    width: NonNegativeInt
    height: NonNegativeInt


class ResizeResponse(BaseModel):
    success: bool
    width: int
    height: int
    error: Optional[str] = None


class StatusResponse(BaseModel):
    """Bridge health, answered without touching the webview."""

    status: str = "ok"
    app: str
    pid: int
    uptime_secs: int
    uptime_human: str
