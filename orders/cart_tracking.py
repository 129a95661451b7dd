# orders/cart_tracking.py
"""
Cart abandonment tracking.

Snapshots live in the Django cache, one entry per browser session id with a
TTL equal to the eviction horizon, plus an index entry listing known session
ids so the periodic sweep can walk them. With a shared cache backend the
state survives restarts and is visible to every worker. Index updates take
a short cache lock; snapshot writes are last-writer-wins per session.
"""
import logging
import time
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from .models import StoreSettings
from .validators import PayloadError, parse_quantity
from .whatsapp_utils import WhatsAppAPI

logger = logging.getLogger(__name__)

KEY_PREFIX = "cart_tracking:session:"
INDEX_KEY = "cart_tracking:index"
LOCK_KEY = "cart_tracking:index:lock"
LOCK_TIMEOUT_SECONDS = 5
LOCK_WAIT_SECONDS = 6


def _session_key(session_id):
    return f"{KEY_PREFIX}{session_id}"


def _ttl_seconds():
    return settings.CART_SESSION_TTL_HOURS * 3600


def _load_index():
    return list(cache.get(INDEX_KEY, []))


def _save_index(session_ids):
    cache.set(INDEX_KEY, session_ids, _ttl_seconds())


class TrackerBusy(Exception):
    """The index lock could not be taken in time"""


@contextmanager
def _index_lock():
    """
    Serialise read-modify-write of the index across workers.
    cache.add only succeeds when the key is absent; the timeout clears a
    lock left behind by a crashed worker.
    """
    deadline = time.monotonic() + LOCK_WAIT_SECONDS
    while not cache.add(LOCK_KEY, 1, LOCK_TIMEOUT_SECONDS):
        if time.monotonic() >= deadline:
            raise TrackerBusy("Cart tracking index is locked")
        time.sleep(0.05)
    try:
        yield
    finally:
        cache.delete(LOCK_KEY)


def _add_to_index(session_id):
    with _index_lock():
        index = _load_index()
        if session_id not in index:
            index.append(session_id)
            _save_index(index)


def _remove_from_index(session_ids):
    session_ids = set(session_ids)
    with _index_lock():
        index = _load_index()
        remaining = [session_id for session_id in index if session_id not in session_ids]
        if len(remaining) != len(index):
            _save_index(remaining)


def _parse_price(value):
    if isinstance(value, bool):
        raise PayloadError("Invalid price")
    try:
        price = Decimal(str(value if value is not None else 0))
    except (InvalidOperation, ValueError):
        raise PayloadError("Invalid price")
    if not price.is_finite() or price < 0:
        raise PayloadError("Invalid price")
    return price


def _normalise_items(cart_items):
    """Client cart snapshot to stored lines; raises PayloadError on malformed lines"""
    items = []
    for item in cart_items or []:
        if not isinstance(item, dict):
            raise PayloadError("Invalid cart item")
        items.append({
            "id": str(item.get("id", "")),
            "name": str(item.get("name", "")),
            "price": float(_parse_price(item.get("price"))),
            "quantity": parse_quantity(item.get("quantity", 1)),
            "image": str(item.get("image") or ""),
        })
    return items


def _cart_total(items):
    return sum(Decimal(str(item["price"])) * item["quantity"] for item in items)


def _whatsapp_allowed(toggle):
    return StoreSettings.is_enabled("whatsappEnabled") and StoreSettings.is_enabled(toggle)


def get_session(session_id):
    return cache.get(_session_key(session_id))


def track_cart_update(session_id, cart_items, user_info=None, now=None):
    """Store the latest cart snapshot for a session and reset its reminder state"""
    user_info = user_info or {}
    now = now or timezone.now()

    session = {
        "session_id": session_id,
        "user_id": user_info.get("userId"),
        "phone_number": user_info.get("phoneNumber"),
        "customer_name": user_info.get("name"),
        "cart_items": _normalise_items(cart_items),
        "last_updated": now.timestamp(),
        "reminders_sent": 0,
        "is_abandoned": False,
    }
    cache.set(_session_key(session_id), session, _ttl_seconds())

    _add_to_index(session_id)

    if session["phone_number"] and session["customer_name"] and session["cart_items"]:
        _send_cart_notification(session)

    return session


def _send_cart_notification(session):
    if not _whatsapp_allowed("cartAbandonmentEnabled"):
        return False
    try:
        sent, _ = WhatsAppAPI().send_cart_notification(
            session["phone_number"], session["customer_name"], session["cart_items"]
        )
        return sent
    except Exception as e:
        logger.error(f"Failed to send cart notification: {str(e)}")
        return False


def _send_abandonment_reminder(session):
    if not session.get("phone_number") or not session.get("customer_name"):
        return False
    if session["reminders_sent"] >= settings.CART_MAX_REMINDERS:
        return False
    if not _whatsapp_allowed("cartAbandonmentEnabled"):
        return False

    try:
        sent, _ = WhatsAppAPI().send_cart_abandonment_reminder(
            session["phone_number"],
            session["customer_name"],
            session["cart_items"],
            _cart_total(session["cart_items"]),
        )
    except Exception as e:
        logger.error(f"Failed to send abandonment reminder: {str(e)}")
        return False

    if sent:
        session["reminders_sent"] += 1
    return sent


def sweep(now=None):
    """
    Flag sessions idle past the abandonment threshold (one reminder each)
    and evict sessions idle past the TTL horizon.
    Returns {"abandoned": n, "reminded": n, "evicted": n}
    """
    now = now or timezone.now()
    threshold = settings.CART_ABANDONMENT_MINUTES * 60
    horizon = _ttl_seconds()
    stats = {"abandoned": 0, "reminded": 0, "evicted": 0}

    evicted = []
    for session_id in _load_index():
        session = get_session(session_id)
        if session is None:
            # expired from the cache on its own
            evicted.append(session_id)
            stats["evicted"] += 1
            continue

        idle = now.timestamp() - session["last_updated"]

        if idle > horizon:
            cache.delete(_session_key(session_id))
            evicted.append(session_id)
            stats["evicted"] += 1
            continue

        if idle > threshold and not session["is_abandoned"] and session["cart_items"]:
            session["is_abandoned"] = True
            stats["abandoned"] += 1
            if _send_abandonment_reminder(session):
                stats["reminded"] += 1
            remaining_ttl = max(int(horizon - idle), 1)
            cache.set(_session_key(session_id), session, remaining_ttl)

    # sessions tracked while the sweep ran stay in the index
    if evicted:
        _remove_from_index(evicted)
    if any(stats.values()):
        logger.info(f"Cart sweep: {stats}")
    return stats


def mark_completed(session_id):
    cache.delete(_session_key(session_id))
    _remove_from_index([session_id])


def _sessions():
    sessions = []
    for session_id in _load_index():
        session = get_session(session_id)
        if session is not None:
            sessions.append(session)
    return sessions


def abandoned_carts():
    return [session for session in _sessions() if session["is_abandoned"]]


def active_sessions():
    return [session for session in _sessions() if not session["is_abandoned"] and session["cart_items"]]
