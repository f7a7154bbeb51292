#!/usr/bin/env python3
"""
Websocket listener for pushed progress notifications.

Subscribes to the per-run channels named in each tracked run's
notification configuration and feeds incoming messages to the tracker.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import aiohttp

from orchestrator.exceptions import ErrorRecovery
from orchestrator.progress import ProgressTracker

logger = logging.getLogger(__name__)


class ProgressPushListener:
    """Feeds a ProgressTracker from a websocket."""

    def __init__(self,
                 push_url: str,
                 tracker: ProgressTracker,
                 api_token: Optional[str] = None,
                 heartbeat: float = 30.0,
                 max_reconnects: int = 5):
        self.push_url = push_url
        self._tracker = tracker
        self._headers = {'Authorization': f"Bearer {api_token}"} if api_token else {}
        self.heartbeat = heartbeat
        self.max_reconnects = max_reconnects
        self._subscribed: Set[str] = set()
        self.messages_received = 0

    def _dispatch_message(self, raw: str) -> bool:
        """
        Route one websocket text frame to the tracker.

        Accepted shapes are {"channel": ..., "payload": {...}} (or "data")
        and flat objects carrying a channel key next to the progress fields.

        Returns:
            True if a tracked run was updated
        """
        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring non-JSON push message: {raw[:100]}")
            return False
        if not isinstance(message, dict):
            return False

        self.messages_received += 1
        channel = message.get('channel') or ''
        payload: Dict[str, Any] = message.get('payload') or message.get('data') or message
        if not isinstance(payload, dict):
            return False
        return self._tracker.handle_push(channel, payload) is not None

    async def _subscribe_new(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        for channel in self._tracker.channels():
            if channel not in self._subscribed:
                await ws.send_json({'action': 'subscribe', 'channel': channel})
                self._subscribed.add(channel)
                logger.debug(f"Subscribed to {channel}")

    async def listen(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        """
        Listen until no tracked run is active, reconnecting on errors.

        Args:
            session: Session to connect with (a private one is created if omitted)
        """
        owns_session = session is None
        session = session or aiohttp.ClientSession(headers=self._headers)
        attempt = 0
        try:
            while self._tracker.active_run_ids():
                try:
                    await self._listen_once(session)
                    attempt = 0
                    if self._tracker.active_run_ids():
                        logger.info("Push connection closed by server, reconnecting")
                        await asyncio.sleep(1)
                except aiohttp.ClientError as e:
                    attempt += 1
                    if attempt > self.max_reconnects:
                        logger.error(f"Push listener giving up after {attempt - 1} reconnects: {e}")
                        raise
                    delay = ErrorRecovery.get_retry_delay(e, attempt)
                    logger.warning(f"Push connection lost ({e}), reconnecting in {delay}s")
                    await asyncio.sleep(delay)
        finally:
            if owns_session:
                await session.close()

    async def _listen_once(self, session: aiohttp.ClientSession) -> None:
        self._subscribed.clear()
        async with session.ws_connect(self.push_url, heartbeat=self.heartbeat) as ws:
            logger.info(f"Connected to push channel {self.push_url}")
            await self._subscribe_new(ws)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch_message(msg.data)
                    if not self._tracker.active_run_ids():
                        await ws.close()
                        return
                    await self._subscribe_new(ws)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise aiohttp.ClientError(f"websocket error: {ws.exception()}")
