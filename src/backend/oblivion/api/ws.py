"""
WebSocket endpoint for streamed consensus queries.

The client sees each provider's answer the moment it settles instead of
waiting for the slowest one:
  - Request acknowledged
  - One result per session, in settle order
  - Consensus report (or the reason there is none)
  - Completion
"""
from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from oblivion.context import AppContext
from oblivion.models.schemas import AskRequest, QueryResult

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ask")
async def ask_websocket(websocket: WebSocket):
    """
    Protocol:
      Client sends: JSON in AskRequest format, then optionally {"type": "cancel"}
      Server sends: JSON messages for each settled result and the consensus

    Message types:
      - {"type": "ack", "sessions": N}
      - {"type": "result", "result": {...}}
      - {"type": "consensus", "consensus": {...}}
      - {"type": "consensus_error", "message": "..."}
      - {"type": "error", "message": "..."}
      - {"type": "complete", "succeeded": K, "total": N}
    """
    ctx: AppContext = websocket.app.state.context
    await websocket.accept()
    cancel = asyncio.Event()
    listener = None

    try:
        raw = await websocket.receive_text()
        body = AskRequest(**json.loads(raw))

        if len(ctx.fleet) == 0:
            await websocket.send_json({"type": "error", "message": "No active sessions. Add a session first."})
            return

        await websocket.send_json({"type": "ack", "sessions": len(ctx.fleet)})
        listener = asyncio.create_task(_listen_for_cancel(websocket, cancel))

        async def _send_result(result: QueryResult):
            await websocket.send_json({"type": "result", "result": result.model_dump(mode="json")})

        outcome = await ctx.orchestrator.ask(
            body.prompt,
            body.options,
            synthesize=body.synthesize,
            cancel_event=cancel,
            on_settled=_send_result,
        )

        if outcome.consensus is not None:
            await websocket.send_json({
                "type": "consensus",
                "consensus": outcome.consensus.model_dump(mode="json"),
            })
        else:
            await websocket.send_json({"type": "consensus_error", "message": outcome.consensus_error})

        await websocket.send_json({
            "type": "complete",
            "succeeded": sum(1 for r in outcome.results if r.succeeded),
            "total": len(outcome.results),
        })

    except WebSocketDisconnect:
        cancel.set()
    except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "message": "Invalid JSON received"})
    except ValidationError as e:
        await websocket.send_json({"type": "error", "message": f"Invalid request: {e.errors()[0]['msg']}"})
    except Exception as e:
        logger.exception("WebSocket ask failed")
        try:
            await websocket.send_json({"type": "error", "message": str(e)})
        except Exception:
            pass
    finally:
        if listener is not None:
            listener.cancel()
        try:
            await websocket.close()
        except Exception:
            pass


async def _listen_for_cancel(websocket: WebSocket, cancel: asyncio.Event) -> None:
    try:
        while not cancel.is_set():
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "cancel":
                logger.info("Client cancelled the streamed broadcast")
                cancel.set()
    except (WebSocketDisconnect, ValueError):
        cancel.set()
