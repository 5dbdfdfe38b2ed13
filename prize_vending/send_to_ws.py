"""
WebSocket client for pushing events to the kiosk front-end.
"""

import json
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

from prize_vending.configs import WS_URL
from prize_vending.loggers import logger


async def send_to_ws(
    event: str,
    data: Optional[dict[str, Any]] = None,
    ws_url: str = WS_URL,
) -> bool:
    """
    Send an event to the WebSocket server.

    Args:
        event: The event name to send.
        data: Optional dictionary of event data.
        ws_url: WebSocket URL to connect to (default from config).

    Returns:
        True if the message was sent successfully, False otherwise.

    Example:
        await send_to_ws(
            event='dispenseOutcome',
            data={'outcome': 'success', 'slot': 24, 'tier': 'gold'},
        )
    """
    message = {"event": event, "data": data}

    try:
        async with websockets.connect(ws_url) as ws:
            await ws.send(json.dumps(message, default=str))
            logger.debug(f"WebSocket message sent: {event}")
            return True
    except WebSocketException as e:
        logger.warning(f"WebSocket connection error: {e}")
        return False
    except OSError as e:
        logger.warning(f"WebSocket server unreachable: {e}")
        return False
