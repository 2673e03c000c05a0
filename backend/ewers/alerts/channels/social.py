"""
social.py — Public posts on X (Twitter), Facebook, Instagram and TikTok.

═══════════════════════════════════════════════════════════════════════════
ENDPOINTS
═══════════════════════════════════════════════════════════════════════════

    X (Twitter) v2:
        POST {TWITTER_API_URL}            Bearer token, JSON {"text": …}

    Facebook page (Graph API):
        POST {GRAPH_API_URL}/{page_id}/feed
             message=…, access_token=…

    Instagram (Graph API, two steps):
        1. POST {GRAPH_API_URL}/{ig_id}/media          image_url, caption
        2. POST {GRAPH_API_URL}/{ig_id}/media_publish  creation_id

    TikTok (Content Posting API):
        POST {TIKTOK_API_URL}             Bearer token, JSON post_info + source_info
                                          (PULL_FROM_URL video, alert text as title)

Instagram and TikTok do not accept text-only posts; a default image or video
URL must be configured for live mode. TikTok reports some failures in the
body of an HTTP 200, under ``error.code``.
"""

from __future__ import annotations

import logging

from backend.ewers.alerts.channels.common import (
    ChannelContext,
    mark_failed,
    missing_credentials,
    record_exception,
    record_response,
    simulate,
    start_attempt,
)
from backend.ewers.alerts.models import (
    PUBLIC_TARGET,
    BroadcastChannel,
    ChannelMessage,
    DeliveryAttempt,
)

logger = logging.getLogger(__name__)

TWEET_MAX_CHARS = 280
TIKTOK_TITLE_MAX_CHARS = 2200


def _tweet_text(text: str) -> str:
    if len(text) <= TWEET_MAX_CHARS:
        return text
    return text[: TWEET_MAX_CHARS - 3] + "..."


async def post_twitter(message: ChannelMessage, target: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.TWITTER, target or PUBLIC_TARGET)
    try:
        text = _tweet_text(message.body)
        if not ctx.live:
            return simulate(attempt, text, provider="twitter", length=len(text))

        s = ctx.settings
        if not s.TWITTER_BEARER_TOKEN:
            return missing_credentials(attempt, "TWITTER_BEARER_TOKEN")

        response = await ctx.client.post(
            s.TWITTER_API_URL,
            json={"text": text},
            headers={"Authorization": f"Bearer {s.TWITTER_BEARER_TOKEN}"},
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)


async def post_facebook(message: ChannelMessage, target: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.FACEBOOK, target or PUBLIC_TARGET)
    try:
        if not ctx.live:
            return simulate(attempt, message.body, provider="facebook")

        s = ctx.settings
        if not (s.FACEBOOK_PAGE_ID and s.FACEBOOK_PAGE_TOKEN):
            return missing_credentials(attempt, "FACEBOOK_PAGE_ID", "FACEBOOK_PAGE_TOKEN")

        response = await ctx.client.post(
            f"{s.GRAPH_API_URL.rstrip('/')}/{s.FACEBOOK_PAGE_ID}/feed",
            data={"message": message.body, "access_token": s.FACEBOOK_PAGE_TOKEN},
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)


async def post_instagram(message: ChannelMessage, target: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.INSTAGRAM, target or PUBLIC_TARGET)
    try:
        if not ctx.live:
            return simulate(attempt, message.body, provider="instagram")

        s = ctx.settings
        if not (s.INSTAGRAM_ACCOUNT_ID and s.INSTAGRAM_ACCESS_TOKEN and s.INSTAGRAM_DEFAULT_IMAGE_URL):
            return missing_credentials(
                attempt,
                "INSTAGRAM_ACCOUNT_ID", "INSTAGRAM_ACCESS_TOKEN", "INSTAGRAM_DEFAULT_IMAGE_URL",
            )

        base = f"{s.GRAPH_API_URL.rstrip('/')}/{s.INSTAGRAM_ACCOUNT_ID}"
        container = await ctx.client.post(
            f"{base}/media",
            data={
                "image_url": s.INSTAGRAM_DEFAULT_IMAGE_URL,
                "caption": message.body,
                "access_token": s.INSTAGRAM_ACCESS_TOKEN,
            },
            timeout=ctx.timeout,
        )
        if not container.is_success:
            return record_response(attempt, container)

        creation_id = container.json().get("id")
        response = await ctx.client.post(
            f"{base}/media_publish",
            data={"creation_id": creation_id, "access_token": s.INSTAGRAM_ACCESS_TOKEN},
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)


async def post_tiktok(message: ChannelMessage, target: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.TIKTOK, target or PUBLIC_TARGET)
    try:
        title = message.body[:TIKTOK_TITLE_MAX_CHARS]
        if not ctx.live:
            return simulate(attempt, title, provider="tiktok")

        s = ctx.settings
        if not (s.TIKTOK_ACCESS_TOKEN and s.TIKTOK_DEFAULT_VIDEO_URL):
            return missing_credentials(attempt, "TIKTOK_ACCESS_TOKEN", "TIKTOK_DEFAULT_VIDEO_URL")

        response = await ctx.client.post(
            s.TIKTOK_API_URL,
            json={
                "post_info": {"title": title, "privacy_level": "PUBLIC_TO_EVERYONE"},
                "source_info": {"source": "PULL_FROM_URL", "video_url": s.TIKTOK_DEFAULT_VIDEO_URL},
            },
            headers={"Authorization": f"Bearer {s.TIKTOK_ACCESS_TOKEN}"},
            timeout=ctx.timeout,
        )
        if response.is_success:
            error_code = (response.json().get("error") or {}).get("code", "ok")
            if error_code != "ok":
                return mark_failed(attempt, f"TikTok rejected the post: {error_code}")
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)
