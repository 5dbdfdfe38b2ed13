"""
Prize Vending Service - Main entry point.

Starts the kiosk facade and serves commands received over Redis pub/sub.
"""

import asyncio
import json
from typing import Final

from redis.asyncio import Redis

from prize_vending.application.command_handler import prize_vending_commands
from prize_vending.application.kiosk_facade import KioskFacade
from prize_vending.infrastructure.settings import get_settings
from prize_vending.loggers import logger


# =============================================================================
# Constants
# =============================================================================

settings = get_settings()
COMMAND_CHANNEL: Final[str] = settings.commands.command_channel
RESPONSE_CHANNEL: Final[str] = settings.commands.response_channel


# =============================================================================
# Redis Command Listener
# =============================================================================


async def listen_to_redis(redis: Redis, api: KioskFacade) -> None:
    """
    Listen for commands on Redis pub/sub and process them.

    Args:
        redis: Redis client instance.
        api: KioskFacade instance for command execution.
    """
    try:
        await api.init_devices()
    except Exception as e:
        logger.error(f"Critical error during device initialization: {e}")
        await api.shutdown()
        return

    pubsub = redis.pubsub()
    await pubsub.subscribe(COMMAND_CHANNEL)
    logger.info(f"Listening for commands on channel: {COMMAND_CHANNEL}")

    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue

            raw_data = message.get("data")
            if raw_data == "ping":
                continue

            try:
                command = json.loads(raw_data)
                logger.info(f"Received command: {command}")

                response = await prize_vending_commands(command, api)

                await redis.publish(RESPONSE_CHANNEL, json.dumps(response, default=str))
                logger.info(f"Response sent to {RESPONSE_CHANNEL}: {response}")

            except json.JSONDecodeError as e:
                logger.error(f"Command parsing error: {e}")
            except Exception as e:
                logger.error(f"Unexpected error processing command: {e}")
    finally:
        await pubsub.unsubscribe(COMMAND_CHANNEL)
        await api.shutdown()


# =============================================================================
# Main Entry Point
# =============================================================================


async def main() -> None:
    """
    Main entry point for the prize vending service.

    Opens the Redis connection and starts the command listener.
    """
    settings = get_settings()

    redis = Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        decode_responses=settings.redis.decode_responses,
    )

    api = KioskFacade(redis, settings=settings)

    try:
        await listen_to_redis(redis, api)
    finally:
        await redis.aclose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
