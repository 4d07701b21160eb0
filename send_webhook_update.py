# send_webhook_update.py: post a fake "/start ref_<id>" update to a running backend
#
#   python send_webhook_update.py <telegram_id> [referrer_id]
import os
import sys

import requests
from dotenv import load_dotenv

load_dotenv()

BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:3000")
SECRET_PATH = os.getenv("TELEGRAM_SECRET_PATH", "").strip("/")
SECRET_TOKEN = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")


def main():
    if len(sys.argv) < 2:
        raise SystemExit("usage: send_webhook_update.py <telegram_id> [referrer_id]")
    tg_id = int(sys.argv[1])
    text = "/start"
    if len(sys.argv) > 2:
        text = f"/start ref_{sys.argv[2]}"

    payload = {
        "update_id": 100000,
        "message": {
            "message_id": 1,
            "from": {"id": tg_id, "is_bot": False, "first_name": "Test"},
            "chat": {"id": tg_id, "type": "private", "first_name": "Test"},
            "date": 1700000000,
            "text": text,
        },
    }
    url = BACKEND_URL.rstrip("/") + "/telegram/webhook" + (f"/{SECRET_PATH}" if SECRET_PATH else "")
    headers = {"X-Telegram-Bot-Api-Secret-Token": SECRET_TOKEN} if SECRET_TOKEN else {}

    r = requests.post(url, json=payload, headers=headers, timeout=10)
    print(r.status_code, r.text)


if __name__ == "__main__":
    main()
