"""
Platform Client - Instagram Graph API calls with typed errors.

Every Graph API failure is classified once, here, into a small taxonomy the
delivery pipeline can branch on without re-reading error prose:

    PlatformPermissionError   OAuth / permission problems (codes 10, 190, 200-299)
    MediaFormatError          media or text the platform refuses to accept
    TransientFetchError       the platform could not fetch our media URL,
                              or the network failed on the way there
    PlatformError             anything else

Endpoints:
    POST /{comment_id}/replies        public reply to a comment
    POST /{account_id}/messages       DM, or private reply to a comment
    POST /{account_id}/media          create a media container
    POST /{account_id}/media_publish  publish a container

Configuration:
    GRAPH_API_BASE_URL=https://graph.instagram.com/v22.0
    GRAPH_API_TIMEOUT_SECONDS=10
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

PERMISSION_CODES = {10, 190}
FETCH_SUBCODES = {2207003, 2207020}
FORMAT_SUBCODES = {2207026}

CONTAINER_POLL_ATTEMPTS = 10
CONTAINER_POLL_INTERVAL = 3.0


class PlatformError(Exception):
    """A Graph API call failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: int | None = None,
        subcode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.subcode = subcode


class MediaFormatError(PlatformError):
    pass


class PlatformPermissionError(PlatformError):
    pass


class TransientFetchError(PlatformError):
    pass


def classify_graph_error(status_code: int | None, payload: Any) -> PlatformError:
    """
    Turn a Graph API error response into a typed exception.

    Args:
        status_code: HTTP status of the response.
        payload: Decoded JSON body (or anything else for non-JSON bodies).
    """
    error = payload.get("error", {}) if isinstance(payload, dict) else {}
    if not isinstance(error, dict):
        error = {"message": str(error)}
    message = str(error.get("error_user_msg") or error.get("message") or f"HTTP {status_code}")
    code = error.get("code")
    subcode = error.get("error_subcode")
    lowered = message.lower()
    kwargs = {"status_code": status_code, "code": code, "subcode": subcode}

    if code in PERMISSION_CODES or (isinstance(code, int) and 200 <= code <= 299):
        return PlatformPermissionError(message, **kwargs)
    if subcode in FETCH_SUBCODES:
        return TransientFetchError(message, **kwargs)
    if subcode in FORMAT_SUBCODES or "format" in lowered or "supported" in lowered:
        return MediaFormatError(message, **kwargs)
    if "permission" in lowered or "oauth" in lowered:
        return PlatformPermissionError(message, **kwargs)
    if "uri" in lowered or "download" in lowered or "fetch" in lowered:
        return TransientFetchError(message, **kwargs)
    return PlatformError(message, **kwargs)


_MEDIA_TYPES = {
    "photo": None,
    "video": "VIDEO",
    "reel": "REELS",
    "story": "STORIES",
}


class PlatformClient:
    """Thin async wrapper over the Graph API endpoints we use."""

    def __init__(
        self,
        base_url: str = "https://graph.instagram.com/v22.0",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "PlatformClient":
        return cls(
            base_url=settings.graph_api_base_url,
            timeout=settings.graph_api_timeout_seconds,
        )

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}/{path.lstrip('/')}",
                    json=json,
                    params={**(params or {}), "access_token": access_token},
                )
        except httpx.TransportError as e:
            raise TransientFetchError(f"Network error calling {path}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {"error": {"message": response.text or f"HTTP {response.status_code}"}}

        if response.status_code >= 400 or (isinstance(data, dict) and "error" in data):
            raise classify_graph_error(response.status_code, data)
        return data

    # =========================================================================
    # Replies
    # =========================================================================

    async def reply_to_comment(self, comment_id: str, text: str, access_token: str) -> str:
        data = await self._request(
            "POST", f"{comment_id}/replies", access_token, params={"message": text}
        )
        return str(data["id"])

    async def send_direct_message(
        self,
        account_id: str,
        recipient_id: str,
        text: str,
        access_token: str,
    ) -> str:
        data = await self._request(
            "POST",
            f"{account_id}/messages",
            access_token,
            json={"recipient": {"id": recipient_id}, "message": {"text": text}},
        )
        return str(data.get("message_id") or data.get("id"))

    async def send_private_reply(
        self,
        account_id: str,
        comment_id: str,
        text: str,
        access_token: str,
    ) -> str:
        """DM the author of a comment (Instagram private reply)."""
        data = await self._request(
            "POST",
            f"{account_id}/messages",
            access_token,
            json={"recipient": {"comment_id": comment_id}, "message": {"text": text}},
        )
        return str(data.get("message_id") or data.get("id"))

    # =========================================================================
    # Content Publishing
    # =========================================================================

    async def publish_media(
        self,
        account_id: str,
        content_type: str,
        media_url: str,
        caption: str,
        access_token: str,
    ) -> str:
        """
        Create and publish a media container.

        Returns:
            Published media id.
        """
        if content_type not in _MEDIA_TYPES:
            raise MediaFormatError(f"Unsupported content type: {content_type}")

        params: dict[str, str] = {}
        media_type = _MEDIA_TYPES[content_type]
        if content_type == "photo" or (content_type == "story" and not _looks_like_video(media_url)):
            params["image_url"] = media_url
        else:
            params["video_url"] = media_url
        if media_type:
            params["media_type"] = media_type
        if caption and content_type != "story":
            params["caption"] = caption

        container = await self._request("POST", f"{account_id}/media", access_token, params=params)
        creation_id = str(container["id"])

        if "video_url" in params:
            await self._wait_for_container(creation_id, access_token)

        published = await self._request(
            "POST",
            f"{account_id}/media_publish",
            access_token,
            params={"creation_id": creation_id},
        )
        logger.info(f"Published {content_type} {published.get('id')} for {account_id}")
        return str(published["id"])

    async def _wait_for_container(self, creation_id: str, access_token: str) -> None:
        for _ in range(CONTAINER_POLL_ATTEMPTS):
            data = await self._request(
                "GET", creation_id, access_token, params={"fields": "status_code,status"}
            )
            status = data.get("status_code")
            if status in (None, "FINISHED", "PUBLISHED"):
                return
            if status == "ERROR":
                raise MediaFormatError(f"Container {creation_id} failed: {data.get('status')}")
            await self._sleep(CONTAINER_POLL_INTERVAL)
        raise TransientFetchError(f"Container {creation_id} not ready in time")


def _looks_like_video(url: str) -> bool:
    return url.lower().split("?")[0].endswith((".mp4", ".mov", ".m4v"))
