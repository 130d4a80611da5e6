"""
Classify raw upstream content before extraction.

Upstream sites answer with a 200 even when they serve an anti-bot
interstitial or a "plate not found" template, so the status code says
little.  :func:`classify` looks at the content itself and decides
whether extraction should be attempted.
"""

from __future__ import annotations

from typing import Any

from .schema import BLOCKED, NOT_FOUND, OK

# Any one of these means an active challenge.
CHALLENGE_MARKERS = (
    "checking your browser",
    "just a moment",
    "cf-browser-verification",
    "_cf_chl_opt",
    "cf-challenge",
    "challenge-platform",
    "verify you are human",
    'src="https://hcaptcha.com',
    'src="https://www.hcaptcha.com',
    "www.google.com/recaptcha/api2/anchor",
)

# Only meaningful on a Cloudflare served page.
WEAK_CHALLENGE_MARKERS = (
    "please wait",
    "ray id",
    "attention required",
)

NOT_FOUND_PHRASES = (
    "no se encontr",
    "patente no válida",
    "patente no valida",
    "sin resultados",
    "error al consultar",
    "not found",
    "invalid plate",
)

# A results section that legitimately says "no fines found" still
# contains these, and must not be mistaken for a missing plate.
RESULTS_MARKERS = (
    "multas",
    "fines",
)


def is_challenge(content: str) -> bool:
    lowered = content.lower()
    if any(marker in lowered for marker in CHALLENGE_MARKERS):
        return True
    return "cloudflare" in lowered and any(m in lowered for m in WEAK_CHALLENGE_MARKERS)


def classify(raw: Any) -> str:
    """Return ``ok``, ``blocked`` or ``not_found`` for a raw response body."""
    if raw is None:
        return NOT_FOUND
    content = str(raw)
    if not content.strip():
        return NOT_FOUND
    if is_challenge(content):
        return BLOCKED
    lowered = content.lower()
    if any(phrase in lowered for phrase in NOT_FOUND_PHRASES) and not any(
        marker in lowered for marker in RESULTS_MARKERS
    ):
        return NOT_FOUND
    return OK
