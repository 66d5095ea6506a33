"""Deterministic quantity, mass and dose extraction from utterances."""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace

from health_assistant.domain.actions import Action, MealData, MealItem, SupplementData
from health_assistant.domain.mentions import DoseMention, QuantityMention
from health_assistant.services.reconciler import clamp_servings

_logger = logging.getLogger(__name__)

OZ_TO_G = 28.349523125
LB_TO_G = 453.59237
KG_TO_G = 1000.0

_MASS_TO_GRAMS = {"g": 1.0, "oz": OZ_TO_G, "lb": LB_TO_G, "kg": KG_TO_G}

_HOUSEHOLD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "tablespoon": ("tablespoon", "tablespoons", "tbsp", "tbsps", "tbs", "tbl"),
    "teaspoon": ("teaspoon", "teaspoons", "tsp", "tsps"),
    "cup": ("cup", "cups"),
    "slice": ("slice", "slices"),
    "piece": ("piece", "pieces", "pc", "pcs"),
    "bowl": ("bowl", "bowls"),
    "glass": ("glass", "glasses"),
    "can": ("can", "cans"),
    "bottle": ("bottle", "bottles"),
    "handful": ("handful", "handfuls"),
    "scoop": ("scoop", "scoops"),
    "serving": ("serving", "servings"),
    "plate": ("plate", "plates"),
    "pinch": ("pinch", "pinches"),
    "clove": ("clove", "cloves"),
    "stick": ("stick", "sticks"),
    "bar": ("bar", "bars"),
    "packet": ("packet", "packets"),
    "container": ("container", "containers"),
    "mug": ("mug", "mugs"),
}
_MASS_SYNONYMS: dict[str, tuple[str, ...]] = {
    "g": ("g", "gr", "gram", "grams", "gramme", "grammes"),
    "oz": ("oz", "ounce", "ounces"),
    "lb": ("lb", "lbs", "pound", "pounds"),
    "kg": ("kg", "kgs", "kilo", "kilos", "kilogram", "kilograms"),
}
_STRENGTH_SYNONYMS: dict[str, tuple[str, ...]] = {
    "mg": ("mg", "milligram", "milligrams"),
    "mcg": ("mcg", "ug", "µg", "microgram", "micrograms"),
    "g": ("g", "gram", "grams"),
    "iu": ("iu", "ius"),
    "ml": ("ml", "milliliter", "milliliters", "millilitre", "millilitres"),
}
_FORM_SYNONYMS: dict[str, tuple[str, ...]] = {
    "capsule": ("capsule", "capsules", "cap", "caps"),
    "tablet": ("tablet", "tablets", "tab", "tabs"),
    "softgel": ("softgel", "softgels", "soft gel", "soft gels"),
    "gummy": ("gummy", "gummies"),
    "scoop": ("scoop", "scoops"),
    "drop": ("drop", "drops"),
    "pill": ("pill", "pills"),
    "serving": ("serving", "servings"),
}

_NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "dozen": 12,
}
_UNICODE_FRACTIONS = {"½": 0.5, "¼": 0.25, "¾": 0.75, "⅓": 1 / 3, "⅔": 2 / 3}

# Nouns that follow a number without being something you eat.
_STOP_NOUNS = {
    "am",
    "pm",
    "oclock",
    "o'clock",
    "hour",
    "minute",
    "second",
    "day",
    "week",
    "month",
    "year",
    "time",
    "lot",
    "bit",
    "more",
    "less",
    "of",
    "and",
    "or",
    "to",
    "with",
    "the",
    "for",
    "at",
    "in",
    "on",
    "out",
    "percent",
    "calorie",
    "kcal",
    "step",
    "mile",
    "km",
}
_SIZE_WORDS = ("large", "small", "medium", "big", "little", "whole", "extra", "jumbo")

_STOP_WORDS = {
    "a",
    "an",
    "the",
    "of",
    "and",
    "with",
    "some",
    "my",
    "i",
    "had",
    "have",
    "ate",
    "for",
    "in",
    "on",
    "at",
    "to",
    "plus",
    "then",
    "also",
    "little",
    "bit",
}

_HINT_BOUNDARY = re.compile(
    r"\b(?:and|with|plus|then|also|but|or|for|at|in|on|from|to)\b|[,.;:!?()]|\d",
    re.IGNORECASE,
)
_HINT_MAX_WORDS = 6


def _alternation(synonyms: dict[str, tuple[str, ...]]) -> str:
    words = sorted(
        {word for group in synonyms.values() for word in group},
        key=len,
        reverse=True,
    )
    return "|".join(re.escape(word).replace(r"\ ", r"\s+") for word in words)


def _canonical_lookup(synonyms: dict[str, tuple[str, ...]]) -> dict[str, str]:
    return {
        re.sub(r"\s+", " ", word): canonical
        for canonical, group in synonyms.items()
        for word in group
    }


_HOUSEHOLD = _canonical_lookup(_HOUSEHOLD_SYNONYMS)
_MASS = _canonical_lookup(_MASS_SYNONYMS)
_STRENGTH = _canonical_lookup(_STRENGTH_SYNONYMS)
_FORMS = _canonical_lookup(_FORM_SYNONYMS)

_WORD_NUMBER = "|".join(sorted(_NUMBER_WORDS, key=len, reverse=True))
_NUM_STRICT = (
    r"(?:\d+\s+\d+/\d+"
    r"|\d+/\d+"
    r"|\d*[½¼¾⅓⅔]"
    r"|\d+(?:\.\d+)?"
    r"|\.\d+"
    r"|(?:a\s+)?couple(?:\s+of)?\b"
    r"|half(?:\s+an?)?\b"
    r"|a\s+dozen\b"
    rf"|(?:{_WORD_NUMBER})\b)"
)
_NUM_ANY = rf"(?:{_NUM_STRICT}|an?\b)"
_LEAD = r"(?<![\w./:])"

_UNIT_ALT = rf"(?:{_alternation(_HOUSEHOLD_SYNONYMS)}|{_alternation(_MASS_SYNONYMS)})"
_STRENGTH_ALT = _alternation(_STRENGTH_SYNONYMS)
_FORM_ALT = _alternation(_FORM_SYNONYMS)
_AMOUNT = r"\d+(?:\.\d+)?"

_QUANTITY_PATTERNS = (
    re.compile(
        rf"{_LEAD}(?P<mult>{_NUM_STRICT})\s*[x×]\s*(?P<num>{_NUM_STRICT})\s*"
        rf"(?P<unit>{_UNIT_ALT})\b(?:\s+of\b)?",
        re.IGNORECASE,
    ),
    re.compile(
        rf"{_LEAD}(?P<num>{_NUM_ANY})\s*(?P<unit>{_UNIT_ALT})\s+of\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"{_LEAD}(?P<num>{_NUM_ANY})\s*(?P<unit>{_UNIT_ALT})\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"{_LEAD}(?P<num>{_NUM_STRICT})\s+"
        rf"(?:(?:{'|'.join(_SIZE_WORDS)})\s+)?(?P<noun>[a-z][a-z'-]*)\b",
        re.IGNORECASE,
    ),
)

_DOSE_PATTERNS = (
    re.compile(
        rf"{_LEAD}(?P<count>{_NUM_STRICT})\s*[x×]\s*(?P<amount>{_AMOUNT})\s*"
        rf"(?P<sunit>{_STRENGTH_ALT})\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"{_LEAD}(?P<count>{_NUM_ANY})\s*(?P<form>{_FORM_ALT})\s+(?:of\s+)?"
        rf"(?P<amount>{_AMOUNT})\s*(?P<sunit>{_STRENGTH_ALT})\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"{_LEAD}(?P<amount>{_AMOUNT})\s*(?P<sunit>{_STRENGTH_ALT})\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"{_LEAD}(?P<count>{_NUM_ANY})\s*(?P<form>{_FORM_ALT})\b",
        re.IGNORECASE,
    ),
)


@dataclass(frozen=True)
class _Span:
    start: int
    end: int
    groups: dict[str, str | None]
    family: int


def parse_number(raw: str) -> float | None:
    """Parse a numeral, fraction or number word into a float."""
    token = re.sub(r"\s+", " ", raw.strip().lower())
    if not token:
        return None
    if token in {"a", "an"}:
        return 1.0
    if token.startswith("half"):
        return 0.5
    if "couple" in token:
        return 2.0
    if token == "a dozen":
        return 12.0
    if token in _NUMBER_WORDS:
        return float(_NUMBER_WORDS[token])
    if token[-1] in _UNICODE_FRACTIONS:
        whole = token[:-1]
        return (float(whole) if whole else 0.0) + _UNICODE_FRACTIONS[token[-1]]
    mixed = re.fullmatch(r"(\d+) (\d+)/(\d+)", token)
    if mixed:
        denominator = int(mixed.group(3))
        if denominator == 0:
            return None
        return int(mixed.group(1)) + int(mixed.group(2)) / denominator
    fraction = re.fullmatch(r"(\d+)/(\d+)", token)
    if fraction:
        denominator = int(fraction.group(2))
        if denominator == 0:
            return None
        return int(fraction.group(1)) / denominator
    try:
        return float(token)
    except ValueError:
        return None


def singularize(word: str) -> str:
    """Fold a simple English plural to its singular."""
    lowered = word.lower()
    if len(lowered) > 4 and lowered.endswith("ies"):
        return lowered[:-3] + "y"
    if len(lowered) > 4 and lowered.endswith("oes"):
        return lowered[:-2]
    if lowered.endswith(("ches", "shes", "sses", "xes")):
        return lowered[:-2]
    if len(lowered) > 3 and lowered.endswith("s") and not lowered.endswith("ss"):
        return lowered[:-1]
    return lowered


def _unit_key(raw: str) -> str:
    return re.sub(r"\s+", " ", raw.strip().lower())


def _is_article(raw: str) -> bool:
    return raw.strip().lower() in {"a", "an"}


def _scan(text: str, patterns: Iterable[re.Pattern[str]]) -> list[_Span]:
    claimed: list[tuple[int, int]] = []
    spans: list[_Span] = []
    for family, pattern in enumerate(patterns):
        for match in pattern.finditer(text):
            start, end = match.span()
            if any(start < c_end and c_start < end for c_start, c_end in claimed):
                continue
            span = _Span(start=start, end=end, groups=match.groupdict(), family=family)
            if not _accept(span):
                continue
            claimed.append((start, end))
            spans.append(span)
    spans.sort(key=lambda item: item.start)
    return spans


def _accept(span: _Span) -> bool:
    groups = span.groups
    unit = groups.get("unit")
    if unit is not None and _unit_key(unit) in _MASS:
        # "a g" or "an oz" is not a quantity.
        num = groups.get("num") or ""
        return not _is_article(num)
    noun = groups.get("noun")
    if noun is not None:
        folded = singularize(noun)
        return (
            noun.lower() not in _STOP_NOUNS
            and folded not in _STOP_NOUNS
            and folded not in _NUMBER_WORDS
            and _unit_key(noun) not in _HOUSEHOLD
            and _unit_key(noun) not in _MASS
        )
    return True


def _hint(text: str, start: int, stop: int) -> str:
    segment = text[start:stop]
    segment = re.sub(r"^\s*of\b", "", segment, flags=re.IGNORECASE)
    boundary = _HINT_BOUNDARY.search(segment)
    if boundary:
        segment = segment[: boundary.start()]
    words = segment.split()[:_HINT_MAX_WORDS]
    return " ".join(words).strip().lower()


def _hint_stops(spans: list[_Span], text: str) -> list[int]:
    return [
        spans[index + 1].start if index + 1 < len(spans) else len(text)
        for index in range(len(spans))
    ]


def extract_quantities(text: str) -> list[QuantityMention]:
    """Return non-overlapping count and mass mentions in text order."""
    spans = _scan(text, _QUANTITY_PATTERNS)
    mentions: list[QuantityMention] = []
    for span, stop in zip(spans, _hint_stops(spans, text), strict=True):
        mention = _quantity_from_span(text, span, stop)
        if mention is not None:
            mentions.append(mention)
    return mentions


def _quantity_from_span(text: str, span: _Span, stop: int) -> QuantityMention | None:
    groups = span.groups
    count = parse_number(groups.get("num") or "")
    if count is None:
        return None
    multiplier = groups.get("mult")
    if multiplier is not None:
        factor = parse_number(multiplier)
        if factor is None:
            return None
        count *= factor
    hint = _hint(text, span.end, stop)
    noun = groups.get("noun")
    if noun is not None:
        return QuantityMention(
            kind="count",
            count=count,
            unit=singularize(noun),
            hint=hint,
            start=span.start,
            end=span.end,
        )
    unit_key = _unit_key(groups.get("unit") or "")
    if unit_key in _MASS:
        unit = _MASS[unit_key]
        return QuantityMention(
            kind="mass",
            count=count,
            unit=unit,
            hint=hint,
            start=span.start,
            end=span.end,
            grams=round(count * _MASS_TO_GRAMS[unit], 4),
        )
    return QuantityMention(
        kind="count",
        count=count,
        unit=_HOUSEHOLD[unit_key],
        hint=hint,
        start=span.start,
        end=span.end,
    )


def extract_doses(text: str) -> list[DoseMention]:
    """Return non-overlapping supplement dose/strength mentions."""
    spans = _scan(text, _DOSE_PATTERNS)
    mentions: list[DoseMention] = []
    for span, stop in zip(spans, _hint_stops(spans, text), strict=True):
        groups = span.groups
        raw_count = groups.get("count")
        dose_count = parse_number(raw_count) if raw_count is not None else None
        raw_form = groups.get("form")
        raw_amount = groups.get("amount")
        raw_strength = groups.get("sunit")
        mentions.append(
            DoseMention(
                hint=_hint(text, span.end, stop),
                start=span.start,
                end=span.end,
                dose_count=dose_count,
                dose_unit=_FORMS[_unit_key(raw_form)] if raw_form else None,
                strength_amount=float(raw_amount) if raw_amount else None,
                strength_unit=(
                    _STRENGTH[_unit_key(raw_strength)] if raw_strength else None
                ),
            )
        )
    return mentions


def tokens(text: str) -> set[str]:
    """Return folded content tokens used for mention matching."""
    return {
        singularize(word)
        for word in re.findall(r"[a-z0-9]+", text.lower())
        if word not in _STOP_WORDS
    }


def _quantity_tokens(mention: QuantityMention) -> set[str]:
    words = tokens(mention.hint)
    if mention.kind == "count" and mention.unit not in _HOUSEHOLD_SYNONYMS:
        words.add(mention.unit)
    return words


def _best_target(
    words: set[str], targets: list[tuple[str, set[str]]], claimed: set[str]
) -> str | None:
    best_key: str | None = None
    best_score = 0
    for key, target_words in targets:
        if key in claimed:
            continue
        score = len(words & target_words)
        if score > best_score:
            best_key, best_score = key, score
    return best_key


def apply_quantity_mentions(
    actions: list[Action], mentions: list[QuantityMention]
) -> list[Action]:
    """Attach quantity mentions to the best matching meal items."""
    targets: list[tuple[str, set[str]]] = []
    for action in actions:
        if action.kind != "meal" or action.is_applied:
            continue
        for item in action.meal_items():
            targets.append(
                (
                    f"{action.id}:{item.key}",
                    tokens(item.label) | tokens(item.food_query),
                )
            )

    assignments: dict[str, QuantityMention] = {}
    for mention in mentions:
        key = _best_target(_quantity_tokens(mention), targets, set(assignments))
        if key is None:
            _logger.debug("Dropping unmatched quantity mention: %s", mention)
            continue
        assignments[key] = mention

    if not assignments:
        return actions
    return [_with_quantities(action, assignments) for action in actions]


def _with_quantities(
    action: Action, assignments: dict[str, QuantityMention]
) -> Action:
    if not isinstance(action.data, MealData):
        return action
    items: list[MealItem] = []
    changed = False
    for item in action.data.items:
        mention = assignments.get(f"{action.id}:{item.key}")
        if mention is None:
            items.append(item)
            continue
        changed = True
        items.append(_apply_quantity(item, mention))
    if not changed:
        return action
    return replace(action, data=replace(action.data, items=tuple(items)))


def _apply_quantity(item: MealItem, mention: QuantityMention) -> MealItem:
    if mention.kind == "mass":
        return replace(item, grams_consumed=mention.grams)
    updated = replace(
        item, quantity_count=mention.count, quantity_unit=mention.unit
    )
    if item.grams_consumed is None:
        updated = replace(updated, servings=clamp_servings(mention.count))
    return updated


def apply_dose_mentions(
    actions: list[Action], mentions: list[DoseMention]
) -> list[Action]:
    """Attach dose mentions to the best matching supplement actions."""
    targets = [
        (action.id, tokens(action.data.name) | tokens(action.title))
        for action in actions
        if isinstance(action.data, SupplementData) and not action.is_applied
    ]
    assignments: dict[str, DoseMention] = {}
    for mention in mentions:
        words = tokens(mention.hint)
        key = _best_target(words, targets, set(assignments))
        if key is None:
            _logger.debug("Dropping unmatched dose mention: %s", mention)
            continue
        assignments[key] = mention

    if not assignments:
        return actions
    updated: list[Action] = []
    for action in actions:
        mention = assignments.get(action.id)
        if mention is None or not isinstance(action.data, SupplementData):
            updated.append(action)
            continue
        updated.append(replace(action, data=_apply_dose(action.data, mention)))
    return updated


def _apply_dose(data: SupplementData, mention: DoseMention) -> SupplementData:
    updated = replace(
        data,
        dose_count=mention.dose_count,
        dose_unit=mention.dose_unit,
        strength_amount=mention.strength_amount,
        strength_unit=mention.strength_unit,
    )
    if data.dosage is not None:
        return updated
    if mention.strength_amount is not None:
        return replace(
            updated, dosage=mention.total_strength, unit=mention.strength_unit
        )
    if mention.dose_count is not None:
        return replace(updated, dosage=mention.dose_count, unit=mention.dose_unit)
    return updated


def enrich_actions(actions: list[Action], text: str) -> list[Action]:
    """Apply every mention found in text to the given actions."""
    enriched = apply_quantity_mentions(actions, extract_quantities(text))
    return apply_dose_mentions(enriched, extract_doses(text))
