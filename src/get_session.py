"""Log the scorekeeper account in and write its .session file.

Reading league chats and reacting to results needs a user session. Run
``python src/get_session.py`` once before the first ``scorekeeper poll``;
``scorekeeper`` also calls :func:`authorize` on start and only prompts when
the session is missing or revoked.
"""

import asyncio
import logging
import os
from getpass import getpass

import qrcode
from telethon import TelegramClient, errors

from client import build_client

LOGGER = logging.getLogger(__name__)

QR_ATTEMPTS = 3
QR_TIMEOUT_SECONDS = 60


def _print_qr(url: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def _password() -> str:
    return os.getenv("2FA") or getpass("Two-step verification password: ")


def _login_method() -> str:
    """LOGIN_METHOD from the environment, else ask once."""

    method = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    while method not in {"qr", "phone"}:
        answer = input("Log in with [q]r code or [p]hone code? ").strip().lower()
        method = {"q": "qr", "qr": "qr", "p": "phone", "phone": "phone"}.get(answer, "")
    return method


async def _login_with_qr(client: TelegramClient) -> None:
    qr_login = await client.qr_login()
    for attempt in range(1, QR_ATTEMPTS + 1):
        _print_qr(qr_login.url)
        print(f"Scan with Telegram > Settings > Devices ({attempt}/{QR_ATTEMPTS})")
        try:
            await qr_login.wait(timeout=QR_TIMEOUT_SECONDS)
            return
        except asyncio.TimeoutError:
            await qr_login.recreate()
    raise RuntimeError("QR code was not scanned in time")


async def _login_with_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    await client.sign_in(phone=phone, code=input("Login code: ").strip())


async def authorize(client: TelegramClient) -> None:
    """Make sure the connected client has an authorized user session."""

    if await client.is_user_authorized():
        return

    try:
        if _login_method() == "phone":
            await _login_with_phone(client)
        else:
            await _login_with_qr(client)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_password())


async def main() -> None:
    client = build_client()
    await client.connect()
    try:
        await authorize(client)
        me = await client.get_me()
        LOGGER.info("Session ready for %s (id %s)", me.first_name, me.id)
    finally:
        await client.disconnect()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
