"""Inbound webhook receiver, one URL per connection, and its PMS-side subscription."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from pms_sync.adapters.registry import AdapterRegistry, MissingCredentialsError, UnknownAdapterError
from pms_sync.db.gateway import ConnectionNotFoundError, PersistenceGateway
from pms_sync.dependencies import get_gateway, get_registry, get_webhook_processor
from pms_sync.network.errors import ErrorCode, Result
from pms_sync.services.webhook_registration import register_connection_webhook, unregister_connection_webhook
from pms_sync.services.webhooks import WebhookProcessor, WebhookVerificationError

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/connections/{connection_id}/webhooks")
async def receive_webhook(
    connection_id: int,
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> JSONResponse:
    """
    Accept a PMS push notification for one connection.

    The connection is identified by the URL the PMS was configured to call.
    Processing (adapter calls and DB writes) runs in the threadpool.

    Returns:
        JSONResponse: 200 with the normalised event; 400 for a non-JSON body,
        401 for a bad signature, 404 for an unknown connection and 422 when
        the connection's adapter cannot be built
    """
    raw_body = await request.body()
    try:
        payload: dict[str, Any] = await request.json()
    except ValueError:
        logger.warning("webhook_invalid_json", connection_id=connection_id)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON"})
    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Payload must be a JSON object"}
        )

    try:
        event = await run_in_threadpool(
            processor.process_webhook, connection_id, payload, dict(request.headers), raw_body
        )
    except ConnectionNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": f"Connection {connection_id} not found"},
        )
    except WebhookVerificationError:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})
    except (UnknownAdapterError, MissingCredentialsError) as e:
        logger.error("webhook_adapter_unavailable", connection_id=connection_id, error=str(e))
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"error": str(e)})

    return JSONResponse(
        content={
            "status": "duplicate" if event.duplicate else "accepted",
            "event": event.model_dump(mode="json", exclude={"raw", "data"}),
        }
    )


def _subscription_error(connection_id: int, result: Result[Any]) -> JSONResponse:
    code = status.HTTP_501_NOT_IMPLEMENTED if result.code == ErrorCode.UNSUPPORTED else status.HTTP_502_BAD_GATEWAY
    logger.warning("webhook_subscription_failed", connection_id=connection_id, code=result.code, error=result.message)
    return JSONResponse(
        status_code=code, content={"error": result.message, "code": result.code.value if result.code else None}
    )


@router.post("/connections/{connection_id}/webhooks/subscription")
async def subscribe_webhook(
    connection_id: int,
    registry: AdapterRegistry = Depends(get_registry),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> JSONResponse:
    """
    Register this connection's receiver URL with its PMS.

    Returns:
        JSONResponse: 201 with the subscription; 404 for an unknown
        connection, 501 when the PMS has no registration API and 502 when
        the PMS refuses
    """
    try:
        result = await run_in_threadpool(register_connection_webhook, registry, gateway, connection_id)
    except ConnectionNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": f"Connection {connection_id} not found"},
        )
    except (UnknownAdapterError, MissingCredentialsError) as e:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"error": str(e)})
    if not result.success:
        return _subscription_error(connection_id, result)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=result.data.model_dump(mode="json"))


@router.delete("/connections/{connection_id}/webhooks/subscription/{webhook_id}")
async def unsubscribe_webhook(
    connection_id: int,
    webhook_id: str,
    registry: AdapterRegistry = Depends(get_registry),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> JSONResponse:
    try:
        result = await run_in_threadpool(
            unregister_connection_webhook, registry, gateway, connection_id, webhook_id
        )
    except ConnectionNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": f"Connection {connection_id} not found"},
        )
    if not result.success:
        return _subscription_error(connection_id, result)
    return JSONResponse(content={"status": "removed", "webhook_id": webhook_id})
