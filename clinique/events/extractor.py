from __future__ import annotations

"""
Extract medical entities from consultation transcript text.

Design intent:
- Keyword matching is the always-available path and never fails.
- A local GGUF model (llama_cpp) may be used when configured; any failure
  in that path falls back to keywords for the same text.
- Model answers are cached per normalized text so repeated extraction of an
  unchanged transcript does not re-run inference.
"""

import json
import logging
import os
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence

from clinique.internal_core.contracts import EntityType, MedicalEntity

logger = logging.getLogger(__name__)

SYMPTOM_TERMS: tuple[str, ...] = (
    "pain",
    "hurt",
    "ache",
    "fever",
    "headache",
    "nausea",
    "dizziness",
    "fatigue",
    "cough",
    "shortness of breath",
    "breathe",
    "lightheaded",
    "chest pain",
    "back pain",
    "दर्द",
    "बुखार",
    "सिर दर्द",
    "ଯନ୍ତ୍ରଣା",
    "ଜ୍ୱର",
    "ব্যথা",
    "জ্বর",
    "মাথাব্যথা",
    "வலி",
    "காய்ச்சல்",
    "தலைவலி",
    "నొప్పి",
    "జ్వరం",
    "తలనొప్పి",
    "വേദന",
    "ജ്വരം",
    "തലവേദന",
    "ನೋವು",
    "ಜ್ವರ",
    "ತಲೆನೋವು",
    "દર્દ",
    "જ્વર",
    "માથાનો દુખાવો",
    "ਦਰਦ",
    "ਬੁਖਾਰ",
    "ਸਿਰ ਦਰਦ",
    "درد",
    "بخار",
    "سر درد",
)
CONDITION_TERMS: tuple[str, ...] = (
    "diabetes",
    "hypertension",
    "asthma",
    "covid",
    "flu",
    "infection",
    "allergic",
    "obstructive",
    "uropathy",
    "pneumonia",
    "bronchitis",
    "मधुमेह",
    "उच्च रक्तचाप",
    "अस्थमा",
    "ମଧୁମେହ",
    "ଉଚ୍ଚ ରକ୍ତଚାପ",
    "মধুমেহ",
    "উচ্চ রক্তচাপ",
    "உயர் இரத்த அழுத்தம்",
    "మధుమేహం",
    "అధిక రక్తపోటు",
    "മധുമേഹം",
    "ഉയർന്ന രക്തസമ്മർദ്ദം",
    "ಮಧುಮೇಹ",
    "ಉನ್ನತ ರಕ್ತದೊತ್ತಡ",
    "મધુમેહ",
    "ઉચ્ચ રક્તચાપ",
    "ਮਧੂਮੇਹ",
    "ਉੱਚ ਰਕਤਚਾਪ",
    "ذیابیطس",
    "بلند فشار خون",
)
MEDICATION_TERMS: tuple[str, ...] = (
    "aspirin",
    "paracetamol",
    "insulin",
    "antibiotics",
    "medicine",
    "tablet",
    "pill",
    "एस्पिरिन",
    "पैरासिटामोल",
    "दवा",
    "ଏସ୍ପିରିନ",
    "ପାରାସେଟାମୋଲ",
    "ଔଷଧ",
    "অ্যাসপিরিন",
    "প্যারাসিটামল",
    "ঔষধ",
    "அஸ்பிரின்",
    "பராசிட்டமோல்",
    "மருந்து",
    "అస్పిరిన్",
    "పారాసిటమోల్",
    "మందు",
    "അസ്പിരിൻ",
    "പാരാസിറ്റമോൾ",
    "മരുന്ന്",
    "ಅಸ್ಪಿರಿನ್",
    "ಪಾರಾಸಿಟಮೋಲ್",
    "ಮದ್ದು",
    "અસ્પિરિન",
    "પારાસિટામોલ",
    "દવા",
    "ਅਸਪਿਰਿਨ",
    "ਪਾਰਾਸਿਟਾਮੋਲ",
    "ਦਵਾਈ",
    "اسپرین",
    "پیراسیٹامول",
    "دوا",
)
DATE_TERMS: tuple[str, ...] = (
    "today",
    "yesterday",
    "last week",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)
LOCATION_TERMS: tuple[str, ...] = (
    "hospital",
    "clinic",
    "home",
    "office",
    "emergency",
    "department",
    "room",
    "अस्पताल",
    "क्लिनिक",
    "घर",
)

# (type, terms, confidence) in emission order.
KEYWORD_RULES: tuple[tuple[EntityType, tuple[str, ...], float], ...] = (
    ("symptom", SYMPTOM_TERMS, 0.90),
    ("condition", CONDITION_TERMS, 0.94),
    ("medication", MEDICATION_TERMS, 0.93),
    ("date", DATE_TERMS, 0.95),
    ("location", LOCATION_TERMS, 0.92),
)

LLM_ENTITY_TYPES: frozenset[str] = frozenset(
    {"symptom", "condition", "medication", "procedure", "vital_sign", "anatomy", "test", "date", "location"}
)


class EntityExtractorError(RuntimeError):
    """Raised when the model path cannot produce a usable entity list."""


_cache_lock = RLock()
_cache: Dict[str, List[MedicalEntity]] = {}


def _cache_key(text: str) -> str:
    return (text or "").strip().lower()


def clear_cache() -> None:
    with _cache_lock:
        _cache.clear()


def cache_size() -> int:
    with _cache_lock:
        return len(_cache)


def extract_entities_keyword(text: str) -> List[MedicalEntity]:
    lowered = (text or "").lower()
    entities: List[MedicalEntity] = []
    for entity_type, terms, confidence in KEYWORD_RULES:
        for term in terms:
            if term.lower() in lowered:
                entities.append(MedicalEntity(text=term, type=entity_type, confidence=confidence))
    return entities


def extract_entities(text: str, use_llm: bool = True, llm: Any = None, *, max_tokens: int = 512) -> List[MedicalEntity]:
    """
    Extract entities from `text`.

    The model path runs only when `use_llm` is set and a loaded `llm` (anything
    with llama_cpp's `create_chat_completion`) is supplied.
    """
    key = _cache_key(text)
    if not key:
        return []
    with _cache_lock:
        cached = _cache.get(key)
    if cached is not None:
        return [e.model_copy() for e in cached]

    if not use_llm or llm is None:
        return extract_entities_keyword(text)

    try:
        entities = _extract_with_llm(llm, text, max_tokens=max_tokens)
    except Exception as exc:
        logger.warning("llm entity extraction failed, using keywords: %s", exc)
        return extract_entities_keyword(text)

    with _cache_lock:
        _cache[key] = entities
    return [e.model_copy() for e in entities]


def extract_transcript_entities(
    texts: Sequence[str],
    use_llm: bool = True,
    llm: Any = None,
    *,
    max_tokens: int = 512,
) -> List[MedicalEntity]:
    """Extract over the joined transcript, de-duplicated by (type, text)."""
    joined = " ".join(t.strip() for t in texts if t and t.strip())
    seen: set[tuple[str, str]] = set()
    out: List[MedicalEntity] = []
    for entity in extract_entities(joined, use_llm=use_llm, llm=llm, max_tokens=max_tokens):
        marker = (entity.type, entity.text.lower())
        if marker in seen:
            continue
        seen.add(marker)
        out.append(entity)
    return out


def load_llm(model_path: str, *, chat_format: Optional[str] = None, n_ctx: int = 2048) -> Any:
    path = (model_path or "").strip()
    if not path:
        raise EntityExtractorError("model path is missing; set CLINIQUE_LLAMA_CPP_MODEL")
    if not os.path.exists(path):
        raise EntityExtractorError(f"model file not found: {path}")
    try:
        from llama_cpp import Llama  # type: ignore
    except Exception as exc:
        raise EntityExtractorError(f"llama_cpp import failed: {exc}") from exc

    kwargs: Dict[str, Any] = {
        "model_path": path,
        "n_ctx": int(n_ctx),
        "verbose": False,
        "chat_format": chat_format or "gemma",
    }
    try:
        return Llama(**kwargs)
    except TypeError as exc:
        if "chat_format" not in str(exc):
            raise
        kwargs.pop("chat_format", None)
        return Llama(**kwargs)


def _build_prompt(text: str) -> str:
    return (
        "You are a medical assistant. Extract medical entities from this consultation text.\n"
        f"Text: {json.dumps(text, ensure_ascii=False)}\n\n"
        "Types: symptom, condition, medication, procedure, vital_sign, anatomy, test, date, location.\n"
        "Only include entities clearly mentioned in the text.\n"
        'Answer with JSON only: {"entities": [{"text": "...", "type": "...", "confidence": 0.95}]}'
    )


def _extract_with_llm(llm: Any, text: str, *, max_tokens: int) -> List[MedicalEntity]:
    resp = llm.create_chat_completion(
        messages=[{"role": "user", "content": _build_prompt(text)}],
        temperature=0.0,
        top_p=1.0,
        max_tokens=int(max_tokens),
    )
    raw = str(resp["choices"][0]["message"]["content"] or "").strip()
    payload = _parse_json_object(raw)
    if payload is None:
        raise EntityExtractorError("model output is not a JSON object")
    items = payload.get("entities")
    if not isinstance(items, list):
        raise EntityExtractorError("model output has no entities list")

    entities: List[MedicalEntity] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        label = str(item.get("text", "")).strip()
        entity_type = str(item.get("type", "")).strip().lower()
        if not label or entity_type not in LLM_ENTITY_TYPES:
            continue
        try:
            confidence = float(item.get("confidence", 0.85))
        except (TypeError, ValueError):
            confidence = 0.85
        entities.append(
            MedicalEntity(text=label, type=entity_type, confidence=max(0.0, min(1.0, confidence)))  # type: ignore[arg-type]
        )
    return entities


def _parse_json_object(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    extracted = _extract_first_json_object(raw)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""
