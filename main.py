"""
Google Cloud Function entry point for the site instance handlers.

This module provides HTTP endpoints for:
- /create: Run one provisioning step
- /delete: Run one decommission step
- /health: Health check endpoint

The caller persists the returned callbackContext and posts it back, unchanged,
on the next invocation until the status is SUCCESS or FAILED. Configuration
comes from environment variables, optionally overridden by the request body.
"""

import logging
import os
import sys
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import functions_framework
from flask import Request

# Add src to path for local imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from clients import ComputeRestClient
from config import HandlerConfig
from handlers import CREATE, DELETE, handle_request
from log_utils import setup_logging
from models import CallbackContext, ResourceModel

setup_logging(
    verbose=os.environ.get("VERBOSE", "").lower() in ("true", "1", "yes"),
    structured=True,
)
logger = logging.getLogger(__name__)


# =============================================================================
# Validation
# =============================================================================


def validate_request(func: Callable) -> Callable:
    """
    Decorator to validate incoming step requests.

    Checks:
    - Method is POST
    - Content-Type is JSON
    """

    @wraps(func)
    def wrapper(request: Request) -> Tuple[Dict[str, Any], int]:
        if request.method != "POST":
            return create_response(
                success=False,
                error="Method Not Allowed",
                message="Use POST for handler steps",
                status_code=405,
            )
        content_type = request.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return create_response(
                success=False,
                error="Invalid content type",
                message="Content-Type must be application/json",
                status_code=415,
            )
        return func(request)

    return wrapper


def parse_step_request(
    request: Request, action: str
) -> Tuple[ResourceModel, Optional[CallbackContext], Dict[str, Any]]:
    """
    Extract the resource model, snapshot and config overrides from a request.

    Raises:
        ValueError: If the body is malformed
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")

    raw_model = body.get("resourceModel")
    if not isinstance(raw_model, dict):
        raise ValueError("resourceModel is required")
    model = ResourceModel.from_dict(raw_model)

    if action == CREATE and (not model.name or not model.subnet_id):
        raise ValueError("resourceModel.name and resourceModel.subnetId are required")

    raw_context = body.get("callbackContext")
    if raw_context is not None and not isinstance(raw_context, dict):
        raise ValueError("callbackContext must be an object")
    context = CallbackContext.from_dict(raw_context) if raw_context else None

    overrides = {k: body[k] for k in ("project_id", "zone") if body.get(k)}
    return model, context, overrides


def build_gateway(config: HandlerConfig) -> ComputeRestClient:
    """Create a gateway for this invocation."""
    return ComputeRestClient(
        project_id=config.project_id,
        zone=config.zone,
        timeout_s=config.request_timeout,
    )


# =============================================================================
# Response Helpers
# =============================================================================


def create_response(
    success: bool,
    data: Optional[Dict] = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> Tuple[Dict[str, Any], int]:
    """Create a standardized API response."""
    response = {
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if data:
        response["data"] = data
    if error:
        response["error"] = error
    if message:
        response["message"] = message

    return response, status_code


# =============================================================================
# HTTP Endpoint Handlers
# =============================================================================


@functions_framework.http
def main(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Main entry point for Cloud Function.

    Routes requests based on path:
    - POST /create: Provisioning step
    - POST /delete: Decommission step
    - GET /health: Health check
    - GET /: API info
    """
    path = request.path.rstrip("/")

    routes = {
        "": handle_info,
        "/create": handle_create,
        "/delete": handle_delete,
        "/health": handle_health,
    }

    handler = routes.get(path)
    if not handler:
        return create_response(
            success=False,
            error="Not Found",
            message=f"Unknown endpoint: {path}",
            status_code=404,
        )

    try:
        return handler(request)
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return create_response(
            success=False,
            error="Validation Error",
            message=str(e),
            status_code=400,
        )
    except Exception as e:
        logger.exception(f"Internal error: {e}")
        return create_response(
            success=False,
            error="Internal Server Error",
            message="An unexpected error occurred. Check Cloud Function logs for details.",
            status_code=500,
        )


def handle_info(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle API info request."""
    return create_response(
        success=True,
        data={
            "service": "Site Instance Handlers",
            "version": os.environ.get("APP_VERSION", "1.0.0"),
            "endpoints": {
                "POST /create": "Run one provisioning step",
                "POST /delete": "Run one decommission step",
                "GET /health": "Health check",
            },
        },
    )


def _run_step(request: Request, action: str) -> Tuple[Dict[str, Any], int]:
    model, context, overrides = parse_step_request(request, action)
    config = HandlerConfig.from_env(overrides)

    logger.info(
        f"{action} step: name={model.name}, instance={model.instance_id}, "
        f"resumed={context is not None}"
    )

    event = handle_request(action, model, context, build_gateway(config), config)
    return event.to_dict(), 200


@validate_request
def handle_create(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Handle a provisioning step.

    Request body:
    {
        "resourceModel": {"name": "my-site", "subnetId": "default"},
        "callbackContext": null,  // snapshot from the previous step
        "project_id": "my-project",  // or use GCP_PROJECT_ID env var
        "zone": "europe-west2-a"  // or use ZONE env var
    }
    """
    return _run_step(request, CREATE)


@validate_request
def handle_delete(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Handle a decommission step.

    Request body:
    {
        "resourceModel": {"name": "my-site", "subnetId": "default", "instanceId": "my-site"},
        "callbackContext": null
    }
    """
    return _run_step(request, DELETE)


def handle_health(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle health check request."""
    return create_response(
        success=True,
        data={"status": "healthy"},
    )
