"""Referral links that pre-fill the registration form.

A multiplier shares a link (or its QR code) with recruits; opening it
lands on the registration page with the leader and campaign already
chosen.
"""

from __future__ import annotations

from urllib.parse import urlencode

DEFAULT_BASE_URL = "http://localhost:3000"
REGISTRATION_PATH = "/register"


def build_registration_url(
    base_url: str,
    leader_id: str,
    leader_name: str,
    campaign_id: str,
) -> str:
    """Build the registration URL a leader hands out.

    Args:
        base_url: Public address of the web app; a trailing slash is ignored.
        leader_id: Participant who will be recorded as the recruit's leader.
        leader_name: Shown on the form so the recruit knows who invited them.
        campaign_id: Campaign the recruit registers into.

    Returns:
        e.g. ``http://localhost:3000/register?leaderId=u1&leaderName=Ana+Ruiz&campaignId=c1``

    Raises:
        ValueError: If the base URL, leader ID or campaign ID is empty.
    """
    base = (base_url or "").strip().rstrip("/")
    if not base:
        raise ValueError("base_url is required")
    if not leader_id or not campaign_id:
        raise ValueError("leader_id and campaign_id are required")
    query = urlencode(
        {"leaderId": leader_id, "leaderName": leader_name, "campaignId": campaign_id}
    )
    return f"{base}{REGISTRATION_PATH}?{query}"
