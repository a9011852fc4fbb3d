"""YouTube channel RSS proxy."""
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List

import requests

import config
from errors import ExternalServiceError, ValidationError

logger = logging.getLogger("storefront")

FEED_URL = "https://www.youtube.com/feeds/videos.xml"
CHANNEL_ID_PATTERN = re.compile(r"^UC[a-zA-Z0-9_-]{22}$")

NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "yt": "http://www.youtube.com/xml/schemas/2015",
    "media": "http://search.yahoo.com/mrss/",
}


def validate_channel_id(channel_id: str) -> str:
    if not channel_id:
        raise ValidationError("Channel ID is required")
    if not CHANNEL_ID_PATTERN.match(channel_id):
        raise ValidationError("Invalid channel ID format")
    return channel_id


def _text(entry, path: str) -> str:
    node = entry.find(path, NS)
    return (node.text or "") if node is not None else ""


def parse_feed(xml_content: bytes) -> List[Dict[str, Any]]:
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as exc:
        raise ExternalServiceError("YouTube", f"Failed to parse XML: {exc}")

    videos = []
    for entry in root.findall("atom:entry", NS):
        thumbnail = entry.find("media:group/media:thumbnail", NS)
        videos.append({
            "videoId": _text(entry, "yt:videoId"),
            "title": _text(entry, "atom:title"),
            "published": _text(entry, "atom:published"),
            "updated": _text(entry, "atom:updated"),
            "thumbnail": thumbnail.get("url", "") if thumbnail is not None else "",
            "description": _text(entry, "media:group/media:description"),
        })
    return videos


def fetch_channel_videos(channel_id: str) -> Dict[str, Any]:
    validate_channel_id(channel_id)
    try:
        response = requests.get(FEED_URL, params={"channel_id": channel_id}, timeout=config.FEED_TIMEOUT,
                                headers={"User-Agent": "Mozilla/5.0 (compatible; storefront-feed-proxy)"})
    except requests.RequestException as exc:
        logger.error("YouTube feed request failed: %s", exc)
        raise ExternalServiceError("YouTube", str(exc))

    if response.status_code != 200:
        raise ExternalServiceError("YouTube", f"returned status code {response.status_code}")
    if not response.content:
        raise ExternalServiceError("YouTube", "Empty response")

    videos = parse_feed(response.content)
    return {"success": True, "videos": videos, "count": len(videos)}
