"""
Overlay / consent dismissal heuristic.

Cookie banners and modals vary wildly between sites, so dismissal runs two
tiers: attribute-based selectors first, then visible-text matching on
generic clickables. Both tiers are plain rule tables; extend them here
without touching the control flow. Dismissal is best-effort and never
raises.
"""
import re
from typing import Any, List, Sequence, Tuple

from aeo_schema.utils.logger import LayerLogger

# (group, selectors), tried in order
SELECTOR_RULES: Sequence[Tuple[str, Sequence[str]]] = (
    ("accept", (
        'button[id*="accept"]',
        'button[class*="accept"]',
        'button[id*="agree"]',
        'button[class*="agree"]',
        "[data-accept]",
        '[data-consent="accept"]',
    )),
    ("cookie", (
        'button[id*="cookie"]',
        'button[class*="cookie"]',
        ".cookie-accept",
        ".consent-accept",
        "#cookie-accept",
        "#consent-accept",
    )),
    ("allow", (
        'button[id*="allow"]',
        'button[class*="allow"]',
        'button[id*="approve"]',
        'button[class*="approve"]',
        'button[id*="continue"]',
        'button[class*="continue"]',
    )),
    ("privacy", (
        'button[id*="gdpr"]',
        'button[class*="gdpr"]',
        'button[id*="privacy"]',
        'button[class*="privacy"]',
        '[data-gdpr="accept"]',
        '[data-privacy="accept"]',
    )),
    ("close", (
        'button[aria-label="Close"]',
        'button[title="Close"]',
        "button.close",
        ".close-button",
        ".btn-close",
        ".modal-close",
        ".overlay-close",
        ".popup-close",
    )),
    ("dialog", (
        '[role="dialog"] button',
        '[role="alertdialog"] button',
        ".modal button",
        ".overlay button",
        ".popup button",
    )),
)

TEXT_PHRASES: Sequence[str] = (
    "accept all",
    "i accept",
    "accept",
    "ok",
    "continue",
    "agree",
    "allow",
)

CLICKABLE_SELECTORS: Sequence[str] = (
    "button",
    "a",
    'div[role="button"]',
    'span[role="button"]',
    ".btn",
)

MAX_LABEL_LENGTH = 40
MAX_TEXT_CLICKS = 3
SETTLE_AFTER_CLICK_MS = 500
CLICK_TIMEOUT_MS = 2000

_PHRASE_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(p) for p in TEXT_PHRASES) + r")\b",
    re.IGNORECASE,
)

IN_VIEWPORT_SCRIPT = """
(el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    if (style.visibility === 'hidden' || style.display === 'none') return false;
    return rect.width > 0 && rect.height > 0 &&
        rect.bottom > 0 && rect.right > 0 &&
        rect.top < window.innerHeight && rect.left < window.innerWidth;
}
"""

logger = LayerLogger("overlays")


def matches_dismiss_phrase(text: str) -> bool:
    """Short labels containing an allow-listed phrase as a whole word."""
    label = " ".join((text or "").split())
    if not label or len(label) > MAX_LABEL_LENGTH:
        return False
    return bool(_PHRASE_PATTERN.search(label))


async def _is_in_viewport(element: Any) -> bool:
    return bool(await element.evaluate(IN_VIEWPORT_SCRIPT))


async def _navigates_away(element: Any) -> bool:
    href = await element.get_attribute("href")
    if not href:
        return False
    href = href.strip().lower()
    return not (href.startswith("#") or href.startswith("javascript:"))


async def _click(page: Any, element: Any) -> None:
    await element.click(timeout=CLICK_TIMEOUT_MS)
    await page.wait_for_timeout(SETTLE_AFTER_CLICK_MS)


async def _dismiss_by_selector(page: Any, attempt_number: int) -> List[str]:
    clicked = []
    for group, selectors in SELECTOR_RULES:
        for selector in selectors:
            try:
                elements = await page.query_selector_all(selector)
            except Exception as e:
                logger.log_action("overlay_selector", "skipped", selector=selector, error=str(e))
                continue
            for element in elements:
                try:
                    if not await _is_in_viewport(element):
                        continue
                    await _click(page, element)
                    clicked.append(selector)
                    logger.log_action(
                        "overlay_click", "completed",
                        group=group, selector=selector, attempt=attempt_number,
                    )
                except Exception as e:
                    logger.log_action("overlay_click", "skipped", selector=selector, error=str(e))
    return clicked


async def _dismiss_by_text(page: Any, attempt_number: int) -> List[str]:
    clicked: List[str] = []
    for selector in CLICKABLE_SELECTORS:
        if len(clicked) >= MAX_TEXT_CLICKS:
            break
        try:
            elements = await page.query_selector_all(selector)
        except Exception as e:
            logger.log_action("overlay_text_scan", "skipped", selector=selector, error=str(e))
            continue
        for element in elements:
            if len(clicked) >= MAX_TEXT_CLICKS:
                break
            try:
                text = await element.inner_text()
                if not matches_dismiss_phrase(text):
                    continue
                if await _navigates_away(element) or not await _is_in_viewport(element):
                    continue
                await _click(page, element)
                label = " ".join(text.split())
                clicked.append(label)
                logger.log_action(
                    "overlay_text_click", "completed",
                    text=label, selector=selector, attempt=attempt_number,
                )
            except Exception as e:
                logger.log_action("overlay_text_click", "skipped", selector=selector, error=str(e))
    return clicked


async def dismiss_overlays(page: Any, attempt_number: int = 1) -> int:
    """
    Click away consent banners and modals on ``page``.

    Returns how many elements were clicked. Never raises: a missed
    overlay only degrades extraction quality.
    """
    try:
        by_selector = await _dismiss_by_selector(page, attempt_number)
        by_text = await _dismiss_by_text(page, attempt_number)
    except Exception as e:
        logger.log_warning("overlay dismissal aborted", attempt=attempt_number, error=str(e))
        return 0

    total = len(by_selector) + len(by_text)
    logger.log_action(
        "dismiss_overlays", "completed",
        attempt=attempt_number, selector_clicks=len(by_selector), text_clicks=len(by_text),
    )
    return total
