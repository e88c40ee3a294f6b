"""HTTP request handlers for the inspector bridge."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from . import scripts
from .context import BridgeContext, format_uptime
from .relay import RelayTimeout, RelayUnavailable, ReplyDropped
from .screenshot import capture_screenshot
from .types import (
    EvalRequest,
    EvalResponse,
    InspectRequest,
    QueryRequest,
    ResizeRequest,
    ResizeResponse,
    ScreenshotRequest,
    ScreenshotResponse,
    StatusResponse,
    ValidateClassesRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> BridgeContext:
    return request.app.state.bridge


async def send_eval(context: BridgeContext, script: str) -> EvalResponse:
    """Relay a script to the UI executor and wait for its outcome."""
    try:
        return await context.relay.enqueue(script, timeout=context.eval_timeout)
    except RelayUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except RelayTimeout as e:
        logger.warning("Eval timed out: %s", e)
        raise HTTPException(status_code=504, detail=str(e)) from e
    except ReplyDropped as e:
        logger.warning("Eval dropped without reply: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/status", response_model=StatusResponse)
async def status(context: BridgeContext = Depends(get_context)) -> StatusResponse:
    """Check bridge health."""
    secs = context.uptime_secs()
    return StatusResponse(
        status="ok",
        app=context.app_name,
        pid=context.pid,
        uptime_secs=secs,
        uptime_human=format_uptime(secs),
    )


@router.post("/eval", response_model=EvalResponse, response_model_exclude_none=True)
async def eval_script(
    req: EvalRequest, context: BridgeContext = Depends(get_context)
) -> EvalResponse:
    """Execute a script as-is."""
    return await send_eval(context, req.script)


@router.post("/query", response_model=EvalResponse, response_model_exclude_none=True)
async def query(
    req: QueryRequest, context: BridgeContext = Depends(get_context)
) -> EvalResponse:
    """Query the DOM by CSS selector."""
    script = scripts.build_query_script(req.selector, req.property)
    return await send_eval(context, script)


@router.get("/dom", response_model=EvalResponse, response_model_exclude_none=True)
async def dom(
    depth: int = Query(scripts.DEFAULT_DOM_DEPTH, ge=0),
    max_nodes: int = Query(scripts.DEFAULT_DOM_MAX_NODES, ge=0),
    selector: Optional[str] = Query(None, min_length=1),
    context: BridgeContext = Depends(get_context),
) -> EvalResponse:
    """Get a simplified DOM tree."""
    script = scripts.build_dom_script(selector, max_depth=depth, max_nodes=max_nodes)
    return await send_eval(context, script)


@router.post("/inspect", response_model=EvalResponse, response_model_exclude_none=True)
async def inspect(
    req: InspectRequest, context: BridgeContext = Depends(get_context)
) -> EvalResponse:
    """Element visibility analysis."""
    return await send_eval(context, scripts.build_inspect_script(req.selector))


@router.post(
    "/validate-classes", response_model=EvalResponse, response_model_exclude_none=True
)
async def validate_classes(
    req: ValidateClassesRequest, context: BridgeContext = Depends(get_context)
) -> EvalResponse:
    """Check which CSS classes have rules in the loaded stylesheets."""
    return await send_eval(context, scripts.build_validate_classes_script(req.classes))


@router.get("/diagnose", response_model=EvalResponse, response_model_exclude_none=True)
async def diagnose(context: BridgeContext = Depends(get_context)) -> EvalResponse:
    """Quick UI health check."""
    return await send_eval(context, scripts.build_diagnose_script())


@router.post(
    "/screenshot", response_model=ScreenshotResponse, response_model_exclude_none=True
)
async def screenshot(
    req: Optional[ScreenshotRequest] = Body(None),
    context: BridgeContext = Depends(get_context),
) -> ScreenshotResponse:
    """Capture the application window to a PNG."""
    output_path = (req.path if req else None) or context.screenshot_path
    error = await run_in_threadpool(capture_screenshot, context.app_name, output_path)
    if error is not None:
        return ScreenshotResponse(success=False, error=error)
    return ScreenshotResponse(success=True, path=output_path)


@router.post("/resize", response_model=ResizeResponse, response_model_exclude_none=True)
async def resize(
    req: ResizeRequest, context: BridgeContext = Depends(get_context)
) -> ResizeResponse:
    """Resize the window.

    The bridge cannot reach the window, so this relays a sentinel script
    that the app has to recognise and apply itself.
    """
    response = await send_eval(context, scripts.build_resize_script(req.width, req.height))
    return ResizeResponse(
        success=response.success,
        width=req.width,
        height=req.height,
        error=None if response.success else response.error,
    )
