"""Fire-and-forget SMS alerts to on-call counselors.

Messages go through a Twilio-compatible REST gateway. Request handlers only
ever *schedule* a notification; delivery, retries and failures happen in a
detached task and are logged, never raised back into the request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

import httpx

from afyalink.config import settings
from afyalink.services.metrics import metrics

logger = logging.getLogger(__name__)

# Strong references so scheduled tasks aren't garbage-collected mid-flight.
_pending: set[asyncio.Task] = set()


def _recipients() -> list[str]:
    return [n.strip() for n in settings.counselor_alert_numbers.split(",") if n.strip()]


def is_configured() -> bool:
    return bool(settings.sms_account_sid and settings.sms_auth_token and _recipients())


def format_session_alert(session_id: str, priority: str, topic: str | None) -> str:
    body = f"AfyaLink: new {priority.upper()} priority chat waiting ({session_id})."
    if topic:
        body += f" Topic: {topic[:60]}"
    return body


async def send_sms(to: str, body: str) -> bool:
    """Deliver one SMS with exponential back-off. Returns True on success."""
    url = f"{settings.sms_api_url}/Accounts/{settings.sms_account_sid}/Messages.json"
    data = {"From": settings.sms_from_number, "To": to, "Body": body}
    auth = (settings.sms_account_sid, settings.sms_auth_token)
    max_retries = settings.sms_max_retries

    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=settings.sms_timeout) as client:
                resp = await client.post(url, data=data, auth=auth)
        except httpx.HTTPError:
            if attempt < max_retries - 1:
                wait = 2 ** attempt
                logger.warning(
                    "SMS to %s raised, retrying in %ds (attempt %d/%d)",
                    to, wait, attempt + 1, max_retries, exc_info=True,
                )
                await asyncio.sleep(wait)
                continue
            logger.exception("SMS to %s failed after %d attempts", to, max_retries)
            return False

        if resp.status_code < 400:
            logger.info("SMS delivered to %s (attempt %d)", to, attempt + 1)
            return True
        # 5xx is worth retrying; 4xx means the request itself is wrong.
        if resp.status_code >= 500 and attempt < max_retries - 1:
            wait = 2 ** attempt
            logger.warning(
                "SMS gateway returned %d for %s, retrying in %ds (attempt %d/%d)",
                resp.status_code, to, wait, attempt + 1, max_retries,
            )
            await asyncio.sleep(wait)
            continue
        logger.warning("SMS to %s rejected with status %d", to, resp.status_code)
        return False
    return False


async def notify_counselors(body: str) -> dict[str, int]:
    """Send *body* to every configured on-call number."""
    if not is_configured():
        logger.debug("Counselor alerts not configured; skipping")
        return {"delivered": 0, "failed": 0}

    delivered = failed = 0
    for number in _recipients():
        if await send_sms(number, body):
            delivered += 1
            metrics.inc_notification(True)
        else:
            failed += 1
            metrics.inc_notification(False)
    return {"delivered": delivered, "failed": failed}


def _finished(task: asyncio.Task) -> None:
    _pending.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Notification task crashed", exc_info=task.exception())


def schedule_notification(coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    """Run *coro* in the background and return immediately."""
    task = asyncio.get_running_loop().create_task(coro)
    _pending.add(task)
    task.add_done_callback(_finished)
    return task
