import asyncio
import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, WebAppInfo

from tycoon import config
from tycoon.outcomes import SELF_REFERRAL, REFERRER_NOT_FOUND
from tycoon.referrals import claim_referral, clean_id, parse_referral_token
from tycoon.users import get_or_create_user

logger = logging.getLogger(__name__)


def display_name(from_user: dict, tg_id: str) -> str:
    return from_user.get("username") or f"{from_user.get('first_name') or 'tg'}_{tg_id}"


async def _send(chat_id, text, webapp_url):
    keyboard = [[InlineKeyboardButton(text="Play", web_app=WebAppInfo(url=webapp_url))]]
    async with Bot(token=config.TELEGRAM_BOT_TOKEN) as bot:
        await bot.send_message(
            chat_id=chat_id,
            text=text,
            reply_markup=InlineKeyboardMarkup(keyboard),
        )


def send_welcome(chat_id, first_name=None):
    """Best effort; the ledger outcome never depends on this."""
    if not config.TELEGRAM_BOT_TOKEN or chat_id is None:
        return False
    try:
        asyncio.run(_send(chat_id, f"Welcome {first_name or ''}! Tap below to play.", config.WEBAPP_URL))
        return True
    except Exception:
        logger.exception("send_welcome failed for chat %s", chat_id)
        return False


def handle_update(update):
    """
    Handle one webhook update.

    Only ``/start`` matters: ``/start ref_<id>`` runs a referral claim for the
    sender, a bare ``/start`` bootstraps the sender's account. Returns a
    small dict describing what happened, for the webhook response body.
    """
    msg = (update or {}).get("message") or (update or {}).get("edited_message")
    if not msg:
        return {"handled": False}

    from_user = msg.get("from") or {}
    tg_id = clean_id(from_user.get("id"))
    text = (msg.get("text") or "").strip()
    command = text.split()[0].split("@", 1)[0].lower() if text else ""
    if not tg_id or command != "/start":
        return {"handled": False}

    name = display_name(from_user, tg_id)
    referrer_id = parse_referral_token(text)

    if referrer_id:
        outcome = claim_referral(referrer_id, tg_id, name)
        if outcome.status in (SELF_REFERRAL, REFERRER_NOT_FOUND):
            # the link was bad, the player is still welcome
            logger.warning("telegram webhook: referral %s for %s ignored: %s",
                           referrer_id, tg_id, outcome.status)
            get_or_create_user(tg_id, name)
        result = {"handled": True, "referral": outcome.status}
    else:
        get_or_create_user(tg_id, name)
        result = {"handled": True}

    chat_id = (msg.get("chat") or {}).get("id", from_user.get("id"))
    send_welcome(chat_id, from_user.get("first_name"))
    return result
