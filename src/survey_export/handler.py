"""
Serverless invocation entry point.

``handler(event, context)`` accepts either an API gateway style event
(JSON string under ``body``) or the payload itself, runs the export
pipeline to completion and returns ``{statusCode, headers, body}``.
``cors_handler`` answers preflight requests.

Example Usage:
    >>> from survey_export.handler import handler
    >>>
    >>> response = handler({"body": json.dumps(payload)}, context)
    >>> response["statusCode"]
    200
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from .config import ExportConfig
from .errors import ValidationError
from .main import ExportPipeline, new_request_id
from .models.export_result import ExportResult
from .utils.log_setup import configure_logging, request_context


__all__ = ["CORS_HEADERS", "cors_handler", "handle_invocation", "handler"]

logger = logging.getLogger(__name__)


CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "POST,OPTIONS",
}


def _request_id_from(event: Any, context: Any) -> str:
    request_id = getattr(context, "aws_request_id", None)
    if not request_id and isinstance(event, dict):
        request_context_info = event.get("requestContext")
        if isinstance(request_context_info, dict):
            request_id = request_context_info.get("requestId")
    return request_id or new_request_id()


def parse_event(event: Any) -> Dict[str, Any]:
    """
    Extract the invocation payload from an event.

    Raises:
        ValidationError: If the body is not a JSON object.
    """
    if not isinstance(event, dict):
        raise ValidationError("Invalid input parameters", details=["event must be an object"])

    if "body" not in event:
        return event

    body = event.get("body")
    if body is None or body == "":
        raise ValidationError("Invalid input parameters", details=["request body is empty"])
    if isinstance(body, dict):
        return body
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            "Invalid input parameters", details=[f"body is not valid JSON: {e}"]
        ) from e
    if not isinstance(payload, dict):
        raise ValidationError("Invalid input parameters", details=["body must be a JSON object"])
    return payload


async def handle_invocation(
    event: Any,
    request_id: str,
    config: Optional[ExportConfig] = None,
    pipeline: Optional[ExportPipeline] = None,
) -> ExportResult:
    """Parse the event and run the pipeline; never raises."""
    pipeline = pipeline or ExportPipeline(config=config)

    with request_context(request_id):
        try:
            payload = parse_event(event)
        except ValidationError as e:
            logger.error(f"Invalid event: {e.details}")
            return ExportResult(
                success=False,
                request_id=request_id,
                message=e.message,
                error_code=e.error_code,
                status_code=e.status_code,
                details=e.details,
            )

    return await pipeline.run_payload(payload, request_id=request_id)


def to_http_response(result: ExportResult) -> Dict[str, Any]:
    return {
        "statusCode": result.status_code,
        "headers": dict(CORS_HEADERS),
        "body": json.dumps(result.to_response()),
    }


def handler(
    event: Any,
    context: Any = None,
    config: Optional[ExportConfig] = None,
    pipeline: Optional[ExportPipeline] = None,
) -> Dict[str, Any]:
    """
    Run one export invocation.

    Args:
        event: Gateway event or raw payload.
        context: Runtime context; ``aws_request_id`` is used as request id.
        config: Configuration override (defaults to the environment).
        pipeline: Pipeline override.

    Returns:
        ``{statusCode, headers, body}`` with a JSON body.
    """
    if isinstance(event, dict) and str(event.get("httpMethod", "")).upper() == "OPTIONS":
        return cors_handler(event, context)

    config = config or (pipeline.config if pipeline else ExportConfig.from_env())
    configure_logging(config.log_level)

    request_id = _request_id_from(event, context)
    with request_context(request_id):
        logger.info("Export invocation started")

    result = asyncio.run(handle_invocation(event, request_id, config=config, pipeline=pipeline))

    with request_context(request_id):
        logger.info(
            f"Export invocation finished: status={result.status_code} "
            f"duration={result.duration_ms}ms"
        )
    return to_http_response(result)


def cors_handler(event: Any = None, context: Any = None) -> Dict[str, Any]:
    """Answer a CORS preflight request."""
    headers = dict(CORS_HEADERS)
    headers.pop("Content-Type")
    return {"statusCode": 200, "headers": headers, "body": ""}
