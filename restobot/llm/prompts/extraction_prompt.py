"""Prompt for structured extraction of free-form restaurant answers."""

from __future__ import annotations

import json
from typing import Sequence

SYSTEM_PROMPT = """אתה עוזר חכם למערכת ניהול מלאי והזמנות למסעדות בוואטסאפ.
תפקידך לחלץ מידע מובנה מהודעות המשתמשים, במיוחד כאשר המשתמש עונה בצורה לא מובנית.

כאשר המשתמש שולח הודעה שאינה תואמת את הפורמט הצפוי, עליך:
1. להבין את הכוונה העיקרית
2. לחלץ נתונים רלוונטיים (שמות, מספרים, כמויות, יחידות מידה, ימים)
3. להחזיר תשובה מובנית לפי הסכמה שתקבל

התשובה שלך תשמש לעיבוד אוטומטי. החזר JSON ורק JSON, בלי markdown ובלי הסברים:
{
  "data": <ערך לפי הסכמה, או null אם חסר מידע>,
  "is_final": true | false,
  "follow_up": "שאלת המשך קצרה בעברית למשתמש, או מחרוזת ריקה",
  "summary": "כאשר is_final=true: סיכום קצר וברור בעברית של הנתונים שחולצו, לאישור המשתמש"
}

כללים:
- is_final=true רק כאשר כל השדות הנדרשים בסכמה מולאו ואין ספק לגבי הכוונה.
- אם חסר מידע או שהתשובה לא ברורה, is_final=false ושאלת המשך אחת ממוקדת ב-follow_up.
- אל תמציא נתונים שהמשתמש לא כתב.
- כאשר מוצגות אפשרויות, השתמש במזהה (id) של האפשרות ולא בתווית שלה."""


def _format_history(history: Sequence[tuple[str, str]]) -> str:
    if not history:
        return "(אין)"
    return "\n".join(f"{role}: {body}" for role, body in history)


def _format_options(options: Sequence[tuple[str, str]]) -> str:
    if not options:
        return "(אין)"
    return "\n".join(f"- id={option_id}: {label}" for label, option_id in options)


def build_extraction_prompt(
    *,
    instruction: str,
    schema: dict,
    message: str,
    history: Sequence[tuple[str, str]] = (),
    options: Sequence[tuple[str, str]] = (),
    context: dict | None = None,
) -> str:
    """User-turn prompt: the state's instruction, target schema and conversation so far."""
    known = json.dumps(context or {}, ensure_ascii=False, default=str)
    return f"""הנחיה לשלב הנוכחי:
{instruction}

סכמת JSON של הערך ב-"data":
{json.dumps(schema, ensure_ascii=False)}

אפשרויות שהוצגו למשתמש:
{_format_options(options)}

מידע שכבר נאסף:
{known}

היסטוריית השיחה בשלב זה:
{_format_history(history)}

הודעת המשתמש:
"{message}"
"""
