import logging
import os
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import httpx
from fastapi import FastAPI, HTTPException

from shared.contracts.models import MessageIn, MessageOut

logger = logging.getLogger(__name__)

app = FastAPI(title="whatsapp_gateway")
MESSAGE_LOG: list[dict[str, Any]] = []
MAX_LOG_ENTRIES = 1000


def _append_log(entry: dict[str, Any]) -> None:
    MESSAGE_LOG.append(entry)
    if len(MESSAGE_LOG) > MAX_LOG_ENTRIES:
        del MESSAGE_LOG[0 : len(MESSAGE_LOG) - MAX_LOG_ENTRIES]


def orchestrator_url() -> str:
    return os.getenv("ORCHESTRATOR_URL", "http://orchestrator:8001/replies")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/webhook")
async def inbound_webhook(message: MessageIn) -> dict[str, Any]:
    _append_log(
        {
            "direction": "inbound",
            "received_at": datetime.now(timezone.utc).isoformat(),
            "message": message.model_dump(mode="json"),
        }
    )
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(orchestrator_url(), json=message.model_dump(mode="json"))
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error(f"Forwarding {message.message_id} to orchestrator failed: {exc}")
        raise HTTPException(status_code=502, detail="orchestrator unavailable") from exc
    return {"accepted": True, "message_id": message.message_id, "outcome": response.json()}


@app.post("/send")
def send_message(message: MessageOut) -> dict[str, Any]:
    message_id = message.correlation_id or f"out_{uuid4().hex[:12]}"
    _append_log(
        {
            "direction": "outbound",
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "message_id": message_id,
            "message": message.model_dump(mode="json"),
        }
    )
    return {"status": "queued", "message_id": message_id, "channel": message.channel.value}


@app.get("/logs")
def logs() -> list[dict[str, Any]]:
    return MESSAGE_LOG
