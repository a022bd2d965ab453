"""
Anti-bot and CAPTCHA detection over rendered HTML.

Both detectors work on a page snapshot (HTML plus cookie names) so they can
run against any executor's output, not only a live browser page.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from selectolax.parser import HTMLParser

DETECTION_THRESHOLD = 30
EXTREME_CONFIDENCE = 70


@dataclass
class AntiBotReport:
    detected: bool
    confidence: int
    indicators: List[str] = field(default_factory=list)

    @property
    def difficulty(self) -> str:
        """``extreme`` for strong protection, otherwise ``hard``."""
        return "extreme" if self.confidence > EXTREME_CONFIDENCE else "hard"


@dataclass
class CaptchaChallenge:
    type: str = "none"
    site_key: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.type != "none"


def _title_and_text(tree: HTMLParser) -> tuple[str, str]:
    title_node = tree.css_first("title")
    title = title_node.text(strip=True) if title_node else ""
    body = tree.body
    text = body.text(separator=" ", strip=True) if body is not None else ""
    return title, text


def detect_anti_bot(html: str, cookie_names: Iterable[str] = ()) -> AntiBotReport:
    """Score protection indicators; detected when confidence exceeds 30."""
    tree = HTMLParser(html or "")
    title, text = _title_and_text(tree)
    title_lower = title.lower()
    text_lower = text.lower()
    cookies = set(cookie_names)

    checks = [
        (tree.css_first("[data-ray]") is not None or "cloudflare" in title_lower, "Cloudflare protection detected", 30),
        (tree.css_first(".g-recaptcha, [data-sitekey]") is not None, "reCAPTCHA detected", 25),
        (tree.css_first(".h-captcha") is not None, "hCaptcha detected", 25),
        (tree.css_first("[data-distil-auto-init]") is not None, "Distil Networks protection", 20),
        (any(c.startswith(("incap_ses", "visid_incap")) for c in cookies), "Imperva Incapsula detected", 20),
        (tree.css_first("[data-akamai-bm-capabilities]") is not None, "Akamai Bot Manager detected", 20),
        ("bot" in title_lower or "blocked" in title_lower, "Bot detection in title", 15),
        ("access denied" in text_lower or "forbidden" in text_lower, "Access denied message", 35),
        ("rate limit" in text_lower or "too many requests" in text_lower, "Rate limiting detected", 30),
        (
            tree.css_first('script[src*="challenge"]') is not None or "checking your browser" in text_lower,
            "JavaScript challenge detected",
            25,
        ),
    ]

    indicators = [label for hit, label, _ in checks if hit]
    confidence = min(sum(weight for hit, _, weight in checks if hit), 100)
    return AntiBotReport(detected=confidence > DETECTION_THRESHOLD, confidence=confidence, indicators=indicators)


def detect_captcha(html: str) -> CaptchaChallenge:
    """First CAPTCHA family found on the page, or type ``none``."""
    tree = HTMLParser(html or "")

    recaptcha = tree.css_first(".g-recaptcha, [data-sitekey]")
    if recaptcha is not None and "h-captcha" not in (recaptcha.attributes.get("class") or ""):
        return CaptchaChallenge(type="recaptcha", site_key=recaptcha.attributes.get("data-sitekey"))

    hcaptcha = tree.css_first(".h-captcha")
    if hcaptcha is not None:
        return CaptchaChallenge(type="hcaptcha", site_key=hcaptcha.attributes.get("data-sitekey"))

    title, _ = _title_and_text(tree)
    if "cloudflare" in title.lower() or tree.css_first("[data-ray]") is not None:
        return CaptchaChallenge(type="cloudflare")

    image = tree.css_first('img[src*="captcha"], img[alt*="captcha"]')
    if image is not None:
        return CaptchaChallenge(type="custom", image_url=image.attributes.get("src"))

    return CaptchaChallenge()
