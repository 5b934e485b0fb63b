import json
import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import parse_qsl

from telebot import types, util

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: int
    first_name: str
    last_name: str
    username: str
    is_bot: bool


IdentityProvider = Callable[[], "Identity | None"]


def identity_from_user(user: types.User | None) -> Identity | None:
    if user is None:
        return None
    return Identity(
        id=user.id,
        first_name=user.first_name or "",
        last_name=user.last_name or "",
        username=user.username or "",
        is_bot=bool(user.is_bot),
    )


def identity_from_init_data(raw_init_data: str | None, bot_token: str | None = None) -> Identity | None:
    """
    Read the user out of a Mini App initData query string.

    With a bot token the payload signature must check out. Anything missing
    or malformed means "no identity", never an error.
    """
    if not raw_init_data:
        return None
    if bot_token:
        try:
            valid = util.validate_web_app_data(bot_token, raw_init_data)
        except Exception as e:
            log.warning("initData validation crashed: %s", e)
            return None
        if not valid:
            log.warning("initData signature mismatch, ignoring identity")
            return None

    fields = dict(parse_qsl(raw_init_data, keep_blank_values=True))
    raw_user = fields.get("user")
    if not raw_user:
        return None
    try:
        payload: Any = json.loads(raw_user)
    except json.JSONDecodeError:
        log.warning("initData user field is not JSON")
        return None
    if not isinstance(payload, dict) or "id" not in payload:
        return None
    payload.setdefault("is_bot", False)
    payload.setdefault("first_name", "")
    try:
        user = types.User.de_json(payload)
    except (TypeError, ValueError, KeyError) as e:
        log.warning("initData user can't be read: %s", e)
        return None
    return identity_from_user(user)


def init_data_identity_provider(raw_init_data: str | None, bot_token: str | None = None) -> IdentityProvider:
    return lambda: identity_from_init_data(raw_init_data, bot_token)


def static_identity_provider(identity: Identity | None) -> IdentityProvider:
    return lambda: identity
