"""Lark Open Platform clients used by the minutes pipeline.

- App access token provider
- Meeting and transcript lookup
- Interactive-card notifications
- Minutes persistence in Lark Base
"""

from src.lark.bitable import MinutesStore, MinutesStoreError, SaveResult
from src.lark.client import LarkClient, LarkClientError
from src.lark.meeting import MeetingApiError, MeetingClient, MeetingNotFoundError
from src.lark.message import BatchNotificationResult, NotificationResult, NotificationService
from src.lark.token import AppAccessTokenProvider
from src.lark.transcript import (
    TranscriptApiError,
    TranscriptClient,
    TranscriptNotReadyError,
    TranscriptUnavailableError,
)

__all__ = [
    "AppAccessTokenProvider",
    "BatchNotificationResult",
    "LarkClient",
    "LarkClientError",
    "MeetingApiError",
    "MeetingClient",
    "MeetingNotFoundError",
    "MinutesStore",
    "MinutesStoreError",
    "NotificationResult",
    "NotificationService",
    "SaveResult",
    "TranscriptApiError",
    "TranscriptClient",
    "TranscriptNotReadyError",
    "TranscriptUnavailableError",
]
