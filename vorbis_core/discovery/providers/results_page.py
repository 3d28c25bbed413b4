"""
Extraction of search results from a video results page.

The search proxy relays the video site's HTML results page unchanged. The
page embeds its data as a ``var ytInitialData = {...};`` script; every
``videoRenderer`` node inside it is one result. Nodes are turned into the
same camelCase payloads the JSON contract uses, so Candidate.from_dict
reads both.
"""

import json
import re
from typing import Any, Dict, Iterator, List, Optional

INITIAL_DATA_PATTERNS = (
    re.compile(r"var ytInitialData\s*=\s*(\{.*?\});\s*</script>", re.DOTALL),
    re.compile(r"window\[\"ytInitialData\"\]\s*=\s*(\{.*?\});\s*</script>", re.DOTALL),
)


class ResultsPageError(ValueError):
    """Raised when a page carries no recognisable result data."""
    pass


def extract_initial_data(html: str) -> Dict[str, Any]:
    for pattern in INITIAL_DATA_PATTERNS:
        match = pattern.search(html or "")
        if not match:
            continue
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise ResultsPageError(f"ytInitialData is not valid JSON: {e}") from e
    raise ResultsPageError("page has no ytInitialData")


def iter_video_renderers(node: Any) -> Iterator[Dict[str, Any]]:
    """Yield videoRenderer nodes in document order."""
    if isinstance(node, dict):
        renderer = node.get('videoRenderer')
        if isinstance(renderer, dict):
            yield renderer
        for value in node.values():
            yield from iter_video_renderers(value)
    elif isinstance(node, list):
        for value in node:
            yield from iter_video_renderers(value)


def renderer_text(value: Any) -> Optional[str]:
    """Text of a ``{"simpleText": ...}`` or ``{"runs": [{"text": ...}]}`` node."""
    if not isinstance(value, dict):
        return None
    simple = value.get('simpleText')
    if isinstance(simple, str) and simple.strip():
        return simple.strip()
    runs = value.get('runs')
    if isinstance(runs, list):
        joined = "".join(run.get('text', '') for run in runs if isinstance(run, dict)).strip()
        return joined or None
    return None


def parse_clock_duration(value: Optional[str]) -> Optional[int]:
    """'3:45' -> 225, '1:02:03' -> 3723; None when it is not a clock value."""
    if not value:
        return None
    parts = value.strip().split(':')
    if not 2 <= len(parts) <= 3 or not all(part.isdigit() for part in parts):
        return None
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return seconds


def renderer_to_payload(renderer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    video_id = renderer.get('videoId')
    if not video_id:
        return None

    thumbnails = (renderer.get('thumbnail') or {}).get('thumbnails') or []
    channel = renderer_text(renderer.get('ownerText')) or renderer_text(renderer.get('longBylineText'))
    return {
        'videoId': video_id,
        'title': renderer_text(renderer.get('title')) or "",
        'channelTitle': channel or "",
        'thumbnailUrl': thumbnails[-1].get('url') if thumbnails and isinstance(thumbnails[-1], dict) else None,
        'duration': parse_clock_duration(renderer_text(renderer.get('lengthText'))),
    }


def parse_results_page(html: str) -> List[Dict[str, Any]]:
    """
    Result payloads of a results page, in page order.

    Raises:
        ResultsPageError: when the page has no parsable ytInitialData
    """
    payloads = []
    seen = set()
    for renderer in iter_video_renderers(extract_initial_data(html)):
        payload = renderer_to_payload(renderer)
        if payload is None or payload['videoId'] in seen:
            continue
        seen.add(payload['videoId'])
        payloads.append(payload)
    return payloads
