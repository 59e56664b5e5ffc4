"""
Tests for the platform client and the adaptive delivery ladder.

Test cases:
- Graph error classification into the typed taxonomy
- Direct success is tagged "direct"
- Format error → compression path only
- Permission error → photo_fallback (video) / private_reply (comment)
- Transient fetch error → url_retry_1..3 with 2/5/10s waits
- Anything else → delayed_retry after 15s
- Aggregate failure combines first and last error; publish_or_raise raises

Mocks: Graph API (httpx.MockTransport), sleep
Real: PlatformClient, AdaptivePublisher
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.platform_client import (
    MediaFormatError,
    PlatformError,
    PlatformPermissionError,
    TransientFetchError,
    classify_graph_error,
)
from src.publisher import (
    AdaptivePublisher,
    DeliveryExhausted,
    DeliveryFailure,
    DeliverySuccess,
    MediaTarget,
    ReplyTarget,
    sanitize_text,
)
from tests.conftest import graph_error


def comment_reply(text="ty! 🙌"):
    return ReplyTarget(
        kind="comment",
        account_id="acct",
        access_token="token",
        object_id="c-1",
        text=text,
    )


def video(content_type="video"):
    return MediaTarget(
        account_id="acct",
        access_token="token",
        content_type=content_type,
        media_url="https://cdn.test/clip.mp4",
        caption="new drop",
    )


class TestClassifyGraphError:

    @pytest.mark.parametrize("code", [10, 190, 200, 299])
    def test_permission_codes(self, code):
        error = classify_graph_error(400, {"error": {"message": "nope", "code": code}})
        assert type(error) is PlatformPermissionError
        assert error.code == code

    @pytest.mark.parametrize("subcode", [2207003, 2207020])
    def test_fetch_subcodes(self, subcode):
        error = classify_graph_error(400, {"error": {"message": "x", "code": 9004, "error_subcode": subcode}})
        assert type(error) is TransientFetchError

    @pytest.mark.parametrize("message", [
        "The video format is not supported",
        "Unsupported aspect ratio",
    ])
    def test_format_messages(self, message):
        assert type(classify_graph_error(400, {"error": {"message": message}})) is MediaFormatError

    def test_format_subcode(self):
        error = classify_graph_error(400, {"error": {"message": "x", "error_subcode": 2207026}})
        assert type(error) is MediaFormatError

    def test_permission_message(self):
        error = classify_graph_error(403, {"error": {"message": "Missing OAuth scope"}})
        assert type(error) is PlatformPermissionError

    @pytest.mark.parametrize("message", ["Media download has failed", "Invalid URI", "could not fetch"])
    def test_fetch_messages(self, message):
        assert type(classify_graph_error(400, {"error": {"message": message}})) is TransientFetchError

    def test_everything_else(self):
        error = classify_graph_error(500, {"error": {"message": "An unknown error occurred"}})
        assert type(error) is PlatformError
        assert error.status_code == 500

    def test_non_json_body(self):
        error = classify_graph_error(502, "Bad Gateway")
        assert type(error) is PlatformError
        assert str(error) == "HTTP 502"


@pytest.mark.asyncio
class TestPlatformClient:

    async def test_reply_to_comment_request(self, platform_client_factory):
        client = platform_client_factory({"replies": [httpx.Response(200, json={"id": "r-1"})]})

        reply_id = await client.reply_to_comment("c-1", "ty!", "token")

        assert reply_id == "r-1"
        request = client.transport.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v22.0/c-1/replies"
        assert request.url.params["message"] == "ty!"
        assert request.url.params["access_token"] == "token"

    async def test_send_direct_message_body(self, platform_client_factory):
        client = platform_client_factory({"messages": [httpx.Response(200, json={"message_id": "mid-1"})]})

        message_id = await client.send_direct_message("acct", "user-2", "hey", "token")

        assert message_id == "mid-1"
        body = json.loads(client.transport.requests[0].content)
        assert body == {"recipient": {"id": "user-2"}, "message": {"text": "hey"}}

    async def test_private_reply_targets_comment(self, platform_client_factory):
        client = platform_client_factory()

        await client.send_private_reply("acct", "c-1", "hey", "token")

        body = json.loads(client.transport.requests[0].content)
        assert body["recipient"] == {"comment_id": "c-1"}

    async def test_error_response_raises_typed_error(self, platform_client_factory):
        client = platform_client_factory({"replies": [graph_error("Invalid OAuth access token", code=190)]})

        with pytest.raises(PlatformPermissionError):
            await client.reply_to_comment("c-1", "ty!", "token")

    async def test_network_failure_is_transient(self):
        from src.platform_client import PlatformClient

        def boom(request):
            raise httpx.ConnectError("connection refused")

        client = PlatformClient(base_url="https://graph.test/v22.0", transport=httpx.MockTransport(boom))

        with pytest.raises(TransientFetchError):
            await client.reply_to_comment("c-1", "ty!", "token")

    async def test_publish_photo(self, platform_client_factory):
        client = platform_client_factory({
            "media": [httpx.Response(200, json={"id": "container-1"})],
            "media_publish": [httpx.Response(200, json={"id": "post-1"})],
        })

        post_id = await client.publish_media("acct", "photo", "https://cdn.test/a.jpg", "hello", "token")

        assert post_id == "post-1"
        create, publish = client.transport.requests
        assert create.url.params["image_url"] == "https://cdn.test/a.jpg"
        assert create.url.params["caption"] == "hello"
        assert publish.url.params["creation_id"] == "container-1"

    async def test_publish_reel_waits_for_container(self, platform_client_factory, recorded_sleep):
        client = platform_client_factory({
            "media": [httpx.Response(200, json={"id": "container-2"})],
            "container-2": [
                httpx.Response(200, json={"status_code": "IN_PROGRESS"}),
                httpx.Response(200, json={"status_code": "FINISHED"}),
            ],
            "media_publish": [httpx.Response(200, json={"id": "reel-1"})],
        })

        post_id = await client.publish_media("acct", "reel", "https://cdn.test/clip.mp4", "", "token")

        assert post_id == "reel-1"
        create = client.transport.requests[0]
        assert create.url.params["media_type"] == "REELS"
        assert create.url.params["video_url"] == "https://cdn.test/clip.mp4"
        assert recorded_sleep.calls == [3.0]

    async def test_unknown_content_type(self, platform_client_factory):
        client = platform_client_factory()
        with pytest.raises(MediaFormatError):
            await client.publish_media("acct", "carousel", "https://cdn.test/a.jpg", "", "token")


def scripted_client(**methods):
    client = AsyncMock()
    for name, behaviour in methods.items():
        getattr(client, name).side_effect = behaviour
    return client


@pytest.mark.asyncio
class TestAdaptivePublisher:

    async def test_direct_success(self, recorded_sleep):
        client = scripted_client(reply_to_comment=["r-1"])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(comment_reply())

        assert result == DeliverySuccess(id="r-1", method="direct")
        assert recorded_sleep.calls == []

    async def test_format_error_takes_compression_path_only(self, recorded_sleep):
        client = scripted_client(reply_to_comment=[MediaFormatError("Unsupported characters"), "r-2"])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(comment_reply("ty! 🙌"))

        assert result == DeliverySuccess(id="r-2", method="compression")
        # Re-sent as plain text, nothing else attempted
        assert client.reply_to_comment.await_args_list[1].args == ("c-1", "ty!", "token")
        client.send_private_reply.assert_not_called()
        assert recorded_sleep.calls == []

    async def test_video_format_error_uses_transcoder(self, recorded_sleep):
        client = scripted_client(publish_media=[MediaFormatError("format"), "post-9"])
        transcoder = AsyncMock(return_value="https://cdn.test/clip-h264.mp4")
        publisher = AdaptivePublisher(client, transcoder=transcoder, sleep=recorded_sleep)

        result = await publisher.publish(video())

        assert result == DeliverySuccess(id="post-9", method="compression")
        transcoder.assert_awaited_once_with("https://cdn.test/clip.mp4")
        assert client.publish_media.await_args_list[1].args[2] == "https://cdn.test/clip-h264.mp4"

    async def test_video_format_error_without_transcoder_fails(self, recorded_sleep):
        client = scripted_client(publish_media=[MediaFormatError("format")])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(video())

        assert isinstance(result, DeliveryFailure)
        assert client.publish_media.await_count == 1

    async def test_permission_error_video_falls_back_to_photo(self, recorded_sleep):
        client = scripted_client(publish_media=[PlatformPermissionError("not allowed"), "photo-1"])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(video("reel"))

        assert result == DeliverySuccess(id="photo-1", method="photo_fallback")
        assert client.publish_media.await_args_list[1].args[1] == "photo"

    async def test_permission_error_comment_becomes_private_reply(self, recorded_sleep):
        client = scripted_client(
            reply_to_comment=[PlatformPermissionError("comments disabled")],
            send_private_reply=["dm-1"],
        )
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(comment_reply())

        assert result == DeliverySuccess(id="dm-1", method="private_reply")
        client.send_private_reply.assert_awaited_once_with("acct", "c-1", "ty! 🙌", "token")

    async def test_transient_error_retries_with_backoff(self, recorded_sleep):
        client = scripted_client(reply_to_comment=[
            TransientFetchError("download failed"),
            TransientFetchError("download failed"),
            "r-3",
        ])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(comment_reply())

        assert result == DeliverySuccess(id="r-3", method="url_retry_2")
        assert recorded_sleep.calls == [2.0, 5.0]

    async def test_transient_error_exhausted(self, recorded_sleep):
        client = scripted_client(reply_to_comment=[TransientFetchError(f"fail {i}") for i in range(4)])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        result = await publisher.publish(comment_reply())

        assert isinstance(result, DeliveryFailure)
        assert recorded_sleep.calls == [2.0, 5.0, 10.0]
        assert "Original: fail 0" in result.reason
        assert "Final: fail 3" in result.reason

    async def test_other_error_single_delayed_retry(self, recorded_sleep):
        client = scripted_client(send_direct_message=[PlatformError("unknown"), "mid-2"])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)
        target = ReplyTarget(kind="dm", account_id="acct", access_token="token", object_id="user-2", text="hey")

        result = await publisher.publish(target)

        assert result == DeliverySuccess(id="mid-2", method="delayed_retry")
        assert recorded_sleep.calls == [15.0]

    async def test_publish_or_raise(self, recorded_sleep):
        client = scripted_client(reply_to_comment=[PlatformError("first"), PlatformError("second")])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        with pytest.raises(DeliveryExhausted) as exc:
            await publisher.publish_or_raise(comment_reply())

        assert str(exc.value.failure.first_error) == "first"
        assert str(exc.value.failure.last_error) == "second"

    async def test_each_publish_restarts_ladder(self, recorded_sleep):
        client = scripted_client(reply_to_comment=[PlatformError("down"), PlatformError("down"), "r-5"])
        publisher = AdaptivePublisher(client, sleep=recorded_sleep)

        assert isinstance(await publisher.publish(comment_reply()), DeliveryFailure)
        assert await publisher.publish(comment_reply()) == DeliverySuccess(id="r-5", method="direct")


def test_sanitize_text():
    assert sanitize_text("  ty!! 🙌🔥  so   good ") == "ty!! so good"
