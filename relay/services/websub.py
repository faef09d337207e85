"""Client for YouTube's WebSub (PubSubHubbub) hub."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from relay.core.errors import HubRequestError

logger = logging.getLogger(__name__)

YOUTUBE_HUB_URL = "https://pubsubhubbub.appspot.com/subscribe"
YOUTUBE_FEED_BASE = "https://www.youtube.com/xml/feeds/videos.xml"


@dataclass(slots=True)
class WebSubSubscription:
    """Represents a WebSub subscription request."""

    callback_url: str
    topic_url: str
    mode: str = "subscribe"
    verify: str = "async"
    lease_seconds: int | None = None

    def to_form(self) -> dict[str, str]:
        """Convert the subscription details into form payload."""

        payload: dict[str, str] = {
            "hub.callback": self.callback_url,
            "hub.mode": self.mode,
            "hub.topic": self.topic_url,
            "hub.verify": self.verify,
        }
        if self.lease_seconds is not None:
            payload["hub.lease_seconds"] = str(self.lease_seconds)
        return payload


def channel_feed_url(channel_identifier: str) -> str:
    """Return the canonical YouTube feed URL for a channel id (URLs pass through)."""

    identifier = channel_identifier.strip()
    if identifier.startswith("http://") or identifier.startswith("https://"):
        return identifier
    params = urlencode({"channel_id": identifier})
    return f"{YOUTUBE_FEED_BASE}?{params}"


class HubClient(ABC):
    @abstractmethod
    async def send_subscription_request(
        self,
        topic: str,
        callback: str,
        lease_seconds: int,
        mode: str = "subscribe",
    ) -> bool:
        """Submit a (un)subscribe request; True when the hub accepted it."""

    async def close(self) -> None:
        return None


class HttpHubClient(HubClient):
    """httpx-backed hub client; timeouts and HTTP failures become `False`."""

    def __init__(
        self,
        *,
        hub_url: str = YOUTUBE_HUB_URL,
        timeout: float = 30.0,
        verify_mode: str = "async",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._hub_url = hub_url
        self._verify_mode = verify_mode
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            transport=transport,
            headers={"User-Agent": "youtube-pubsub-relay/0.1"},
        )

    async def _submit(self, request: WebSubSubscription) -> None:
        response = await self._client.post(self._hub_url, data=request.to_form())
        if not response.is_success:
            raise HubRequestError(
                f"Hub answered {response.status_code} for {request.mode} {request.topic_url}"
            )

    async def send_subscription_request(
        self,
        topic: str,
        callback: str,
        lease_seconds: int,
        mode: str = "subscribe",
    ) -> bool:
        request = WebSubSubscription(
            callback_url=callback,
            topic_url=topic,
            mode=mode,
            verify=self._verify_mode,
            lease_seconds=lease_seconds,
        )
        logger.info("Sending %s request to hub for topic %s", mode, topic)
        try:
            await self._submit(request)
        except HubRequestError as exc:
            logger.error("Hub rejected %s request: %s", mode, exc)
            return False
        except httpx.TimeoutException:
            logger.error("Hub %s request timed out for topic %s", mode, topic)
            return False
        except httpx.HTTPError as exc:
            logger.error("Error sending %s request for topic %s: %s", mode, topic, exc)
            return False
        except Exception:  # noqa: BLE001 - boolean contract towards callers
            logger.exception("Unexpected error sending %s request for topic %s", mode, topic)
            return False

        logger.info("Hub accepted %s request for topic %s", mode, topic)
        return True

    async def close(self) -> None:
        await self._client.aclose()
