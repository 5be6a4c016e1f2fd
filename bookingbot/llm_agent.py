"""
LLM-based booking assistant using the OpenAI API.
Builds the Hebrew system prompt from live scheduling state and asks the model for the next reply.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from sqlalchemy.orm import Session

from bookingbot.clock import now_local
from bookingbot.config import config
from bookingbot.db_models import DBBusiness
from bookingbot.errors import CollaboratorUnavailable
from bookingbot.language.messages_he import format_date, format_day_name, format_short, format_time
from bookingbot.logging_config import get_logger
from bookingbot.scheduling import find_free_slots, list_busy_intervals
from bookingbot.services import AppointmentService

logger = get_logger(__name__)

SYSTEM_PROMPT_TEMPLATE = """אתה עוזר אוטומטי חכם לקביעת תורים עבור {business_name}.

התאריך והזמן הנוכחי:
היום: {today}
שעה: {current_time}

ימים קרובים (לחישוב תאריכים):
{days_legend}

פרטי העסק:
- שעות פעילות: {work_start}-{work_end}
- משך תור: {duration} דקות
- ימי עבודה: {working_days}
{owner_line}
תורים תפוסים: {busy}

⚠️ זמנים פנויים (אלה הזמנים היחידים שאתה יכול להציע!):
{free}

⚠️ חשוב: אל תציע זמנים שלא ברשימת הזמנים הפנויים למעלה!
{existing}

⚠️ חוקי קביעת תור - חובה לעקוב אחריהם:

1. תמיד תשאל את שם הלקוח בהתחלה (אם לא יודע)

2. כשהלקוח מציע זמן שנמצא ברשימת הזמנים הפנויים → תשאל אישור עם תאריך מלא
   כשהלקוח מציע זמן שאינו ברשימה → תגיד "תפוס" ותציע מהזמנים הפנויים

3. ⚠️ זיכרון הצעות: אם הצעת "יום שני 15:00 או שלישי 14:00" והלקוח ענה "15:00"
   → הוא מדבר על יום שני 15:00. אל תשאל "איזה יום?", פשוט תאשר.

4. לפני CONFIRM חובה לכתוב:
   "מאשר לך תור ל[יום], [תאריך מלא] בשעה [שעה]?"

5. רק אחרי שהלקוח עונה "כן" / "אישור" / "בטח" → כתוב בשורה נפרדת:
   CONFIRM:YYYY-MM-DDTHH:mm:00|NAME:<השם האמיתי של הלקוח>
   דוגמה: CONFIRM:2026-02-24T15:00:00|NAME:איל

⚠️ אסור לכתוב CONFIRM לפני אישור מפורש של הלקוח!
⚠️ ה-CONFIRM חייב להיות זמן מרשימת הזמנים הפנויים!
⚠️ אל תכתוב שם תבנית כמו "שם_הלקוח". אם אינך יודע את השם, שאל אותו.

ביטול: CANCEL:<id>
שינוי: RESCHEDULE:<id>|NEW_TIME:YYYY-MM-DDTHH:mm:00|NAME:<שם>

הערות בפורמט [[SYS:...]] הן מידע מערכת. אל תצטט אותן ללקוח.

תענה בעברית בלבד, קצר וברור."""

WORKING_DAY_LETTERS = ["ב", "ג", "ד", "ה", "ו", "ש", "א"]


def _describe_working_days(business: DBBusiness) -> str:
    weekdays = business.working_weekdays()
    if not weekdays:
        return "כל השבוע"
    # Sunday first, the way the week is read in Israel
    order = [6, 0, 1, 2, 3, 4, 5]
    return ", ".join(WORKING_DAY_LETTERS[d] + "׳" for d in order if d in weekdays)


def build_context(db: Session, business: DBBusiness, customer_phone: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Gather everything the model needs to know about the business right now.

    Returns a dict with the business profile, date legend, busy and free
    slots, and the customer's nearest upcoming appointment (or None).
    """
    now = now or now_local()

    days_legend = []
    for offset in range(7):
        day = now + timedelta(days=offset)
        days_legend.append(f"{format_day_name(day)} = {day.date().isoformat()} ({format_date(day)})")

    busy = list_busy_intervals(db, business, now=now, limit=config.CONTEXT_BUSY_SLOTS)
    free = find_free_slots(db, business, now, config.CONTEXT_FREE_SLOTS, now=now)
    existing = AppointmentService.get_active_for_customer(db, business.id, customer_phone, now=now)

    return {
        "business": business,
        "now": now,
        "days_legend": days_legend,
        "busy": [a.start_time for a in busy],
        "free": free,
        "existing": existing[0] if existing else None,
    }


def build_system_prompt(context: Dict[str, Any]) -> str:
    business = context["business"]
    now = context["now"]

    busy = ", ".join(format_short(s) for s in context["busy"]) or "אין תורים תפוסים"
    # Machine-readable timestamps so the model copies them into CONFIRM verbatim
    free = "\n".join(f"- {format_short(s)} → {s.isoformat()}" for s in context["free"])

    existing = ""
    appointment = context.get("existing")
    if appointment is not None:
        existing = (
            "\nללקוח יש תור קיים:\n"
            f"תאריך: {format_day_name(appointment.start_time)}, {format_date(appointment.start_time)}\n"
            f"שעה: {format_time(appointment.start_time)}\n"
            f"ID: {appointment.id}\n"
        )

    return SYSTEM_PROMPT_TEMPLATE.format(
        business_name=business.name,
        today=f"{format_day_name(now)}, {format_date(now, with_year=True)}",
        current_time=format_time(now),
        days_legend="\n".join(context["days_legend"]),
        work_start=business.work_start or "09:00",
        work_end=business.work_end or "18:00",
        duration=business.appointment_duration or 30,
        working_days=_describe_working_days(business),
        owner_line=f"- לשאלות נוספות: {business.owner_phone}\n" if business.owner_phone else "",
        busy=busy,
        free=free or "אין זמנים פנויים בשבוע הקרוב",
        existing=existing,
    )


def time_annotation(now: datetime) -> str:
    """Marker prepended to the customer's message so the model knows the current time."""
    return f"[[SYS:now={now.isoformat()}]]"


def _client() -> AsyncOpenAI:
    return AsyncOpenAI(api_key=config.OPENAI_API_KEY)


async def generate_reply(
    system_prompt: str,
    history: List[Dict[str, str]],
    user_message: str,
    client: Optional[AsyncOpenAI] = None,
) -> str:
    """
    Ask the model for the next assistant turn.

    Args:
        system_prompt: Rendered system prompt
        history: Prior turns as [{"role": "user"|"assistant", "content": "..."}], oldest first
        user_message: The customer's message (already annotated)

    Raises:
        CollaboratorUnavailable: the API call failed or returned nothing
    """
    if client is None:
        if not config.has_openai_key():
            raise CollaboratorUnavailable("llm", "OPENAI_API_KEY is not configured")
        client = _client()

    messages = [{"role": "system", "content": system_prompt}]
    for turn in history:
        messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append({"role": "user", "content": user_message})

    try:
        response = await client.chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=messages,
            max_tokens=config.OPENAI_MAX_TOKENS,
            temperature=config.OPENAI_TEMPERATURE,
        )
    except Exception as e:
        logger.error("llm_request_failed", model=config.OPENAI_MODEL, error=str(e))
        raise CollaboratorUnavailable("llm", str(e)) from e

    content = response.choices[0].message.content if response.choices else None
    if not content or not content.strip():
        raise CollaboratorUnavailable("llm", "empty completion")

    logger.info("llm_reply_generated", model=config.OPENAI_MODEL, history_turns=len(history))
    return content
