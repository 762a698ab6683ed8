from __future__ import annotations

import logging
from typing import Optional, Tuple

from .models import ScanRecord
from .store import ScanStore, normalize_results


logger = logging.getLogger(__name__)


NO_DATA = ("NO DATA", "#4b5563")
SECURE = ("SECURE", "#39ff14")
THREAT_COLOR = "#ff003c"

_TEMPLATE = """<svg xmlns="http://www.w3.org/2000/svg" width="140" height="20">
    <linearGradient id="g" x2="0" y2="100%">
        <stop offset="0" stop-color="#0a0a0a" stop-opacity=".1"/>
        <stop offset="1" stop-opacity=".1"/>
    </linearGradient>
    <clipPath id="r">
        <rect width="140" height="20" rx="0" fill="#fff"/>
    </clipPath>
    <g clip-path="url(#r)">
        <rect width="70" height="20" fill="#050505"/>
        <rect x="70" width="70" height="20" fill="{color}"/>
        <rect width="140" height="20" fill="url(#g)"/>
    </g>
    <g fill="#fff" text-anchor="middle" font-family="JetBrains Mono,monospace" font-size="10">
        <text x="35" y="14" fill="#00f0ff" font-weight="bold">SHIPSAFE</text>
        <text x="105" y="14" fill="#000" font-weight="bold">{label}</text>
    </g>
    <rect width="140" height="20" fill="none" stroke="#1f2937" stroke-width="1"/>
</svg>"""


def badge_state(record: Optional[ScanRecord]) -> Tuple[str, str]:
    if record is None:
        return NO_DATA
    count = len(normalize_results(record.results)["issues"])
    if count == 0:
        return SECURE
    return f"{count} THREATS", THREAT_COLOR


def render_badge(label: str, color: str) -> str:
    return _TEMPLATE.format(label=label, color=color)


def badge_for_repo(store: ScanStore, repo_full_name: str) -> str:
    """Badge for the newest scan of a repository. Never raises."""
    try:
        label, color = badge_state(store.latest_for_repo(repo_full_name))
    except Exception:
        logger.exception("Badge lookup failed for %s", repo_full_name)
        label, color = NO_DATA
    return render_badge(label, color)
