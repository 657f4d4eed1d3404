# langlog_server/processing_service/logic/youtube_client.py
import logging
from typing import Any, Dict, Optional

import requests

from langlog_server.processing_service.logic.settings import Settings as ServiceSettingsType
from langlog_server.shared.utils import (
    extract_youtube_playlist_id, extract_youtube_video_id, iso8601_duration_to_seconds
)

logger = logging.getLogger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
MAX_DESCRIPTION_CHARS = 5000
THUMBNAIL_PREFERENCE = ("maxres", "high", "medium", "default")


def best_thumbnail_url(thumbnails: Optional[Dict[str, Any]]) -> Optional[str]:
    for size in THUMBNAIL_PREFERENCE:
        url = ((thumbnails or {}).get(size) or {}).get("url")
        if url:
            return url
    return None


class YouTubeMetadataClient:
    """Thin client over the YouTube Data API v3 videos and playlists endpoints."""

    def __init__(self, settings: ServiceSettingsType, session: Optional[requests.Session] = None):
        self.api_key = settings.YOUTUBE_API_KEY
        self.timeout = settings.YOUTUBE_API_TIMEOUT_S
        self.http = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_first_item(self, resource: str, part: str, item_id: str) -> Optional[Dict[str, Any]]:
        response = self.http.get(
            f"{YOUTUBE_API_BASE}/{resource}",
            params={"part": part, "id": item_id, "key": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        items = response.json().get("items") or []
        return items[0] if items else None

    def fetch_metadata(self, url: str) -> Dict[str, Any]:
        """
        Returns label fields for a video or playlist URL; an empty dict when nothing
        could be resolved. Raises requests.RequestException on transport errors.
        """
        if not self.enabled:
            return {}

        video_id = extract_youtube_video_id(url)
        if video_id:
            video = self._get_first_item("videos", "snippet,statistics,contentDetails", video_id)
            if video:
                return self._video_fields(video)

        playlist_id = extract_youtube_playlist_id(url)
        if playlist_id:
            playlist = self._get_first_item("playlists", "snippet,contentDetails", playlist_id)
            if playlist:
                return self._snippet_fields(playlist.get("snippet") or {})

        logger.debug(f"YouTube API returned nothing for {url}")
        return {}

    def _snippet_fields(self, snippet: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if snippet.get("title"):
            fields["title"] = snippet["title"]
        if snippet.get("channelTitle"):
            fields["author_name"] = snippet["channelTitle"]
        if snippet.get("channelId"):
            fields["author_url"] = f"https://www.youtube.com/channel/{snippet['channelId']}"
        thumb = best_thumbnail_url(snippet.get("thumbnails"))
        if thumb:
            fields["thumbnail_url"] = thumb
        if snippet.get("description"):
            fields["description"] = snippet["description"][:MAX_DESCRIPTION_CHARS]
        return fields

    def _video_fields(self, video: Dict[str, Any]) -> Dict[str, Any]:
        fields = self._snippet_fields(video.get("snippet") or {})
        duration = (video.get("contentDetails") or {}).get("duration")
        if duration:
            fields["full_duration_in_ms"] = iso8601_duration_to_seconds(duration) * 1000
        return fields
