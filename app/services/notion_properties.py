"""Notion property value extraction.

Each Notion property payload carries a `type` tag. Every supported kind has one
extractor that degrades the value to a display string (or None when empty).
Kinds without an extractor yield None.
"""

from typing import Any, Callable, Dict, List, Optional

PropertyValue = Dict[str, Any]


def _plain_text(fragments: Any) -> Optional[str]:
    if not isinstance(fragments, list):
        return None
    text = "".join(f.get("plain_text", "") for f in fragments if isinstance(f, dict))
    return text or None


def _named(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name") or None
    return None


def _title(prop: PropertyValue) -> Optional[str]:
    return _plain_text(prop.get("title"))


def _rich_text(prop: PropertyValue) -> Optional[str]:
    return _plain_text(prop.get("rich_text"))


def _number(prop: PropertyValue) -> Optional[str]:
    num = prop.get("number")
    if num is None:
        return None
    if isinstance(num, float) and num.is_integer():
        num = int(num)
    return str(num)


def _select(prop: PropertyValue) -> Optional[str]:
    return _named(prop.get("select"))


def _status(prop: PropertyValue) -> Optional[str]:
    return _named(prop.get("status"))


def _multi_select(prop: PropertyValue) -> Optional[str]:
    names = [n for n in (_named(o) for o in prop.get("multi_select") or []) if n]
    return ", ".join(names) or None


def _date(prop: PropertyValue) -> Optional[str]:
    date = prop.get("date")
    if not isinstance(date, dict) or not date.get("start"):
        return None
    if date.get("end"):
        return f"{date['start']} → {date['end']}"
    return date["start"]


def _person_label(person: Any) -> str:
    if not isinstance(person, dict):
        return "Unknown"
    email = (person.get("person") or {}).get("email")
    return person.get("name") or email or "Unknown"


def _people(prop: PropertyValue) -> Optional[str]:
    people = prop.get("people") or []
    return ", ".join(_person_label(p) for p in people) or None


def _checkbox(prop: PropertyValue) -> Optional[str]:
    return "Yes" if prop.get("checkbox") else "No"


def _scalar(key: str) -> Callable[[PropertyValue], Optional[str]]:
    def extract(prop: PropertyValue) -> Optional[str]:
        value = prop.get(key)
        return str(value) if value else None

    return extract


def _user(key: str) -> Callable[[PropertyValue], Optional[str]]:
    def extract(prop: PropertyValue) -> Optional[str]:
        user = prop.get(key)
        return user.get("name") or None if isinstance(user, dict) else None

    return extract


def _relation(prop: PropertyValue) -> Optional[str]:
    relations = prop.get("relation") or []
    return f"{len(relations)} linked item(s)" if relations else None


def _rollup(prop: PropertyValue) -> Optional[str]:
    return "(rollup data)" if prop.get("rollup") else None


def _formula(prop: PropertyValue) -> Optional[str]:
    formula = prop.get("formula")
    if not isinstance(formula, dict):
        return None
    kind = formula.get("type")
    if kind == "string":
        return formula.get("string") or None
    if kind == "number":
        return _number({"number": formula.get("number")})
    if kind == "boolean":
        return "Yes" if formula.get("boolean") else "No"
    if kind == "date":
        return _date({"date": formula.get("date")})
    return None


EXTRACTORS: Dict[str, Callable[[PropertyValue], Optional[str]]] = {
    "title": _title,
    "rich_text": _rich_text,
    "number": _number,
    "select": _select,
    "status": _status,
    "multi_select": _multi_select,
    "date": _date,
    "people": _people,
    "checkbox": _checkbox,
    "url": _scalar("url"),
    "email": _scalar("email"),
    "phone_number": _scalar("phone_number"),
    "created_time": _scalar("created_time"),
    "last_edited_time": _scalar("last_edited_time"),
    "created_by": _user("created_by"),
    "last_edited_by": _user("last_edited_by"),
    "relation": _relation,
    "rollup": _rollup,
    "formula": _formula,
}


def display_value(prop: Any) -> Optional[str]:
    """Any property -> display string. Unknown kinds yield None."""
    if not isinstance(prop, dict):
        return None
    extractor = EXTRACTORS.get(prop.get("type"))
    if extractor is None:
        return None
    return extractor(prop)


def _typed(prop: Any, *kinds: str) -> Optional[PropertyValue]:
    if isinstance(prop, dict) and prop.get("type") in kinds:
        return prop
    return None


def title_of(properties: Dict[str, Any]) -> Optional[str]:
    """Text of the (single) title property of a page."""
    for prop in properties.values():
        if _typed(prop, "title"):
            return _title(prop)
    return None


def title_property_name(properties: Dict[str, Any]) -> Optional[str]:
    for name, prop in properties.items():
        if _typed(prop, "title"):
            return name
    return None


def status_of(prop: Any) -> Optional[str]:
    """Status from either a `status` or a `select` property."""
    typed = _typed(prop, "status", "select")
    return _named(typed.get(typed["type"])) if typed else None


def first_person_email(prop: Any) -> Optional[str]:
    typed = _typed(prop, "people")
    if not typed or not typed.get("people"):
        return None
    person = typed["people"][0]
    if not isinstance(person, dict):
        return None
    return (person.get("person") or {}).get("email") or None


def rich_text_of(prop: Any) -> Optional[str]:
    typed = _typed(prop, "rich_text")
    return _rich_text(typed) if typed else None


def text_or_number_of(prop: Any) -> Optional[str]:
    typed = _typed(prop, "rich_text", "number")
    if not typed:
        return None
    return _rich_text(typed) if typed["type"] == "rich_text" else _number(typed)


def url_of(prop: Any) -> Optional[str]:
    typed = _typed(prop, "url")
    return typed.get("url") or None if typed else None


def relation_ids(prop: Any) -> List[str]:
    typed = _typed(prop, "relation")
    if not typed:
        return []
    return [r["id"] for r in typed.get("relation") or [] if isinstance(r, dict) and r.get("id")]
