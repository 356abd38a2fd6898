"""
Input vocabulary for the normalizer and the verification policy engine.

Drafts arrive from an AI step or from chip/picker widgets, so the same value
shows up in several spellings:

  weekdays:  1, "mon", "Monday", "월", "월요일"
  times:     "19:00", "7:00", "오후 7시", "7pm", "저녁"
  signals:   "photo", "camera", "사진", "인증샷", "위치 등록", "체크리스트"

Weekday indices follow the wire format: 0 = Sunday ... 6 = Saturday.
Lookups are case-insensitive and whitespace-trimmed; unknown spellings
return None and the caller decides how to report them.
"""

from __future__ import annotations

import re

from app.cadence.models import Signal

WEEKDAY_NAMES_EN: tuple[str, ...] = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)

WEEKDAY_ALIASES: dict[str, int] = {
    # English
    "sun": 0, "sunday": 0,
    "mon": 1, "monday": 1,
    "tue": 2, "tues": 2, "tuesday": 2,
    "wed": 3, "wednesday": 3,
    "thu": 4, "thur": 4, "thurs": 4, "thursday": 4,
    "fri": 5, "friday": 5,
    "sat": 6, "saturday": 6,
    # Korean
    "일": 0, "일요일": 0,
    "월": 1, "월요일": 1,
    "화": 2, "화요일": 2,
    "수": 3, "수요일": 3,
    "목": 4, "목요일": 4,
    "금": 5, "금요일": 5,
    "토": 6, "토요일": 6,
}

# Korean time-of-day anchors used when no clock time is given
TIME_ANCHORS_KO: dict[str, str] = {
    "새벽": "05:00",
    "아침": "07:00",
    "정오": "12:00",
    "점심": "12:00",
    "저녁": "18:00",
    "밤": "21:00",
    "자정": "00:00",
}

# Small count words ("three times a week", "주 세 번")
COUNT_WORDS: dict[str, int] = {
    "once": 1, "one": 1, "twice": 2, "two": 2, "three": 3, "four": 4,
    "five": 5, "six": 6, "seven": 7,
    "한": 1, "두": 2, "세": 3, "네": 4, "다섯": 5, "여섯": 6, "일곱": 7,
}

SIGNAL_LABELS: dict[str, Signal] = {
    # English
    "time": Signal.time,
    "schedule": Signal.time,
    "location": Signal.location,
    "gps": Signal.location,
    "place": Signal.location,
    "photo": Signal.photo,
    "camera": Signal.photo,
    "picture": Signal.photo,
    "selfie": Signal.photo,
    "screenshot": Signal.photo,
    "screentime": Signal.screentime,
    "screen time": Signal.screentime,
    "screen_time": Signal.screentime,
    "manual": Signal.manual,
    "checklist": Signal.manual,
    "check-in": Signal.manual,
    # Korean
    "시간": Signal.time,
    "위치": Signal.location,
    "위치 등록": Signal.location,
    "장소": Signal.location,
    "사진": Signal.photo,
    "인증샷": Signal.photo,
    "카메라": Signal.photo,
    "스크린타임": Signal.screentime,
    "스크린 타임": Signal.screentime,
    "사용 시간": Signal.screentime,
    "체크리스트": Signal.manual,
    "수동": Signal.manual,
    "직접 체크": Signal.manual,
}

# Free-text cues the policy engine uses on the goal description
DIGITAL_CUES: tuple[str, ...] = (
    "screen", "app", "phone", "computer", "social media", "instagram", "youtube",
    "스크린", "스마트폰", "핸드폰", "휴대폰", "유튜브", "인스타", "게임",
)

PHOTO_CUES: tuple[str, ...] = (
    "photo", "picture", "selfie", "snapshot", "before and after", "before/after", "receipt",
    "사진", "인증샷", "찍",
)

PLACE_CUES: tuple[str, ...] = (
    "gym", "pool", "stadium", "court", "park", "library", "studio", "dojo", "office",
    "cafe", "campus", "school", "church", "temple", "clinic", "hospital", "coworking",
    "museum", "theater",
    "헬스장", "체육관", "수영장", "도서관", "공원", "학원", "카페", "사무실", "교회",
)


def weekday_from_name(name: str) -> int | None:
    return WEEKDAY_ALIASES.get(name.strip().lower())


def weekday_name(index: int) -> str:
    return WEEKDAY_NAMES_EN[index % 7]


def signal_from_label(label: str) -> Signal | None:
    """Map a widget/AI label to a Signal.

    Exact match first, then the longest known label contained in `label`
    ("위치 등록하기" -> location). Never matches a fragment of a known label.
    """
    key = label.strip().lower()
    if not key:
        return None
    if key in SIGNAL_LABELS:
        return SIGNAL_LABELS[key]
    for known in sorted(SIGNAL_LABELS, key=len, reverse=True):
        if known in key:
            return SIGNAL_LABELS[known]
    return None


def mentions(text: str | None, cues: tuple[str, ...]) -> bool:
    """True if `text` contains any cue; ASCII cues must match whole words."""
    if not text:
        return False
    lowered = text.lower()
    for cue in cues:
        if cue.isascii():
            if re.search(rf"\b{re.escape(cue)}\b", lowered):
                return True
        elif cue in lowered:
            return True
    return False
