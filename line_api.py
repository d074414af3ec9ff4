"""Thin wrapper around the LINE Messaging API (line-bot-sdk v3).

Without a channel access token nothing is sent: replies and pushes are logged
instead, which is how the bot runs in development and tests.
"""
from __future__ import annotations

from typing import Optional

import structlog
from linebot.v3.messaging import (
    ApiClient,
    Configuration,
    MessagingApi,
    PushMessageRequest,
    ReplyMessageRequest,
    TextMessage,
)
from linebot.v3.messaging.exceptions import ApiException
from linebot.v3.webhook import SignatureValidator

logger = structlog.get_logger("line")


class LineMessenger:
    def __init__(self, channel_secret: str = "", access_token: str = ""):
        self.channel_secret = channel_secret
        self.access_token = access_token
        self._validator = SignatureValidator(channel_secret) if channel_secret else None

    def verify_signature(self, body: str, signature: Optional[str]) -> bool:
        """X-Line-Signature check. Always False when no channel secret is configured."""
        if self._validator is None or not signature:
            return False
        return self._validator.validate(body, signature)

    def _api(self) -> ApiClient:
        return ApiClient(Configuration(access_token=self.access_token))

    def reply(self, reply_token: str, text: str) -> None:
        if not self.access_token:
            logger.info("line_reply_skipped", reply_token=reply_token, text=text)
            return
        with self._api() as client:
            MessagingApi(client).reply_message(
                ReplyMessageRequest(reply_token=reply_token, messages=[TextMessage(text=text)])
            )

    def push(self, user_id: str, text: str) -> None:
        """Best-effort push; API failures are logged, not raised."""
        if not self.access_token:
            logger.info("line_push_skipped", user_id=user_id, text=text)
            return
        try:
            with self._api() as client:
                MessagingApi(client).push_message(
                    PushMessageRequest(to=user_id, messages=[TextMessage(text=text)])
                )
        except ApiException as exc:
            logger.warning("line_push_failed", user_id=user_id, status=exc.status)

    def get_display_name(self, user_id: str) -> Optional[str]:
        """Profile display name, or None when unavailable."""
        if not self.access_token:
            return None
        try:
            with self._api() as client:
                profile = MessagingApi(client).get_profile(user_id)
        except ApiException as exc:
            logger.warning("line_profile_failed", user_id=user_id, status=exc.status)
            return None
        return profile.display_name
