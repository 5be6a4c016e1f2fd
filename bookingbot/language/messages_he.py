"""
Hebrew customer- and owner-facing messages.

All Hebrew text sent over WhatsApp is retrieved from this module, including
the date formatting used inside messages.
"""

from datetime import datetime
from typing import Dict
import re

# Python weekday() order: Monday=0 ... Sunday=6
WEEKDAYS_HE = ["שני", "שלישי", "רביעי", "חמישי", "שישי", "שבת", "ראשון"]
WEEKDAYS_SHORT_HE = ["ב׳", "ג׳", "ד׳", "ה׳", "ו׳", "ש׳", "א׳"]
MONTHS_HE = [
    "ינואר", "פברואר", "מרץ", "אפריל", "מאי", "יוני",
    "יולי", "אוגוסט", "ספטמבר", "אוקטובר", "נובמבר", "דצמבר",
]

CUSTOMER_MESSAGES: Dict[str, str] = {
    "business_not_found": "מצטער, המערכת נמצאת בהגדרה.",
    "technical_error": "מצטער, נתקלתי בבעיה טכנית. אנא נסה שוב או צור קשר עם בעל העסק.",

    # Directive outcomes
    "booking_confirmed": (
        "✅ מעולה{name_part}! התור נקבע בהצלחה.\n\n"
        "📅 {day_name}, {date}\n"
        "🕐 שעה: {time}\n"
        "⏱️ משך: {duration} דקות\n\n"
        "📍 {business_name}\n"
        "{owner_line}"
        "תקבל תזכורת לפני המועד. נתראה! 👋"
    ),
    "slot_taken": "❌ מצטער, הזמן שנבחר כבר תפוס. אנא בחר זמן אחר.",
    "slot_taken_alternatives": "❌ מצטער, הזמן שנבחר כבר תפוס. זמנים פנויים קרובים: {alternatives}",
    "cancelled": "✅ התור בוטל בהצלחה.",
    "rescheduled": "✅ התור שונה בהצלחה! {day_name}, {date} בשעה {time}.",
    "appointment_not_found": "מצטער, לא מצאתי תור פעיל כזה. אפשר לקבוע תור חדש?",
    "ask_real_name": "לפני שאקבע את התור, מה השם המלא שלך?",
    "directive_unclear": "מצטער, לא הצלחתי להבין את הבקשה. אפשר לנסח שוב?",

    # Owner notifications
    "owner_new": (
        "🔔 תור חדש ב{business_name}!\n\n"
        "👤 לקוח: {customer_name}\n"
        "📞 טלפון: {customer_phone}\n"
        "📅 {day_name}, {date}\n"
        "🕐 שעה: {time}\n"
        "⏱️ משך: {duration} דקות\n\n"
        "✅ התור נקבע אוטומטית{calendar_note}."
    ),
    "owner_cancelled": (
        "❌ תור בוטל ב{business_name}\n\n"
        "👤 לקוח: {customer_name}\n"
        "📞 טלפון: {customer_phone}\n"
        "📅 {day_name}, {date}\n"
        "🕐 שעה: {time}\n"
        "⏱️ משך: {duration} דקות"
    ),
    "owner_rescheduled": (
        "🔄 תור שונה ב{business_name}\n\n"
        "👤 לקוח: {customer_name}\n"
        "📞 טלפון: {customer_phone}\n"
        "📅 זמן חדש: {day_name}, {date}\n"
        "🕐 שעה: {time}\n"
        "⏱️ משך: {duration} דקות"
    ),

    # Calendar
    "calendar_event_summary": "תור - {customer}",
    "calendar_event_description": "לקוח: {customer}\nטלפון: {phone}\nנקבע דרך WhatsApp Bot",
    "calendar_manual_note": "נוצר ידנית ביומן Google",
    "calendar_manual_name": "תור מיומן",
    "calendar_connected_page": (
        "<html><body style=\"font-family: Arial; text-align: center; padding: 50px;\">"
        "<h1>✅ היומן חובר בהצלחה!</h1>"
        "<p>מעכשיו כל התורים יתווספו אוטומטית ליומן Google שלך.</p>"
        "<p>אפשר לסגור את הדף הזה.</p>"
        "</body></html>"
    ),
    "calendar_connect_failed": "❌ שגיאה בחיבור יומן",
}

# Bare greetings that open a fresh conversation.
NEW_SESSION_PHRASES = {
    "שלום", "היי", "הי", "הלו", "בוקר טוב", "ערב טוב", "אהלן",
    "hi", "hello", "hey", "/new", "/start",
}

# Literal template names a model sometimes emits instead of the customer's name.
PLACEHOLDER_NAME_PATTERNS = [
    r"^שם[_ ]?(?:ה)?לקוח$",
    r"^שם$",
    r"^\[.*\]$",
    r"^\{.*\}$",
    r"^<.*>$",
    r"^customer[_ ]?name$",
    r"^name$",
    r"^(?:test|טסט|בדיקה)(?:[_ ]?(?:\d+|user|customer|name))?$",
    r"^unknown$",
    r"^לקוח$",
]

_PLACEHOLDER_RE = [re.compile(p, re.IGNORECASE) for p in PLACEHOLDER_NAME_PATTERNS]


def is_placeholder_name(name: str) -> bool:
    """Does ``name`` look like a templated literal rather than a real name?"""
    n = (name or "").strip()
    if not n:
        return True
    return any(p.match(n) for p in _PLACEHOLDER_RE)


def is_new_session_message(text: str) -> bool:
    t = (text or "").strip().strip("!.?,").strip().lower()
    return t in NEW_SESSION_PHRASES


def format_day_name(value: datetime) -> str:
    return f"יום {WEEKDAYS_HE[value.weekday()]}"


def format_date(value: datetime, with_year: bool = False) -> str:
    text = f"{value.day} ב{MONTHS_HE[value.month - 1]}"
    if with_year:
        text += f" {value.year}"
    return text


def format_time(value: datetime) -> str:
    return value.strftime("%H:%M")


def format_short(value: datetime) -> str:
    """Compact form used in slot lists: ``ג׳ 24.2 15:00``."""
    return f"{WEEKDAYS_SHORT_HE[value.weekday()]} {value.day}.{value.month} {value.strftime('%H:%M')}"


def date_parts(value: datetime) -> Dict[str, str]:
    return {
        "day_name": format_day_name(value),
        "date": format_date(value),
        "time": format_time(value),
    }


def get_text(key: str, **variables) -> str:
    """
    Get Hebrew text for a customer or owner.
    This function must NEVER return an empty string.
    """
    template = CUSTOMER_MESSAGES.get(key)

    if not isinstance(template, str) or not template.strip():
        template = CUSTOMER_MESSAGES["technical_error"]

    try:
        text = template.format(**variables) if variables else template
    except (KeyError, IndexError, ValueError):
        text = template

    if not text.strip():
        return CUSTOMER_MESSAGES["technical_error"]

    return text
