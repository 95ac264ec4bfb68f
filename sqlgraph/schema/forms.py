"""
Inflection and case helpers used for model and field naming.

- pluralise / singularise: English plural forms with an irregular table
- set_plural_form / set_plural_forms: extend the module-wide irregular table
- to_camel_case / to_pascal_case / to_snake_case / lcfirst: case conversion

Invariants:
    - pluralise(singularise(x)) == pluralise(x) for every singular noun the
      rules or the irregular table know about
    - Irregular forms match as suffixes, so "grandchild" pluralises to
      "grandchildren", and a capitalised suffix keeps its capital
"""

from __future__ import annotations

import re
from collections.abc import Mapping

PLURAL_FORMS: dict[str, str] = {
    "child": "children",
    "person": "people",
}

_CONSONANT_Y = re.compile(r"([^aeiou])y$", re.IGNORECASE)
_CONSONANT_IES = re.compile(r"([^aeiou])ies$", re.IGNORECASE)


def _ucfirst(s: str) -> str:
    return s[:1].upper() + s[1:]


def lcfirst(s: str) -> str:
    """Lower-case the first character."""
    return s[:1].lower() + s[1:]


def _forms(forms: Mapping[str, str] | None) -> dict[str, str]:
    if not forms:
        return PLURAL_FORMS
    return {**PLURAL_FORMS, **forms}


def pluralise(name: str, forms: Mapping[str, str] | None = None) -> str:
    """Return the plural form of a (snake, camel or plain) name.

    Args:
        name: Singular name
        forms: Extra irregular forms, applied on top of the module table

    Returns:
        Plural name
    """
    for singular, plural in _forms(forms).items():
        if name.endswith(singular):
            return name[: len(name) - len(singular)] + plural
        if name.endswith(_ucfirst(singular)):
            return name[: len(name) - len(singular)] + _ucfirst(plural)

    result = _CONSONANT_Y.sub(r"\1ies", name)
    if result != name:
        return result

    if name.endswith("s"):
        return name + "es"

    return name + "s"


def singularise(name: str, forms: Mapping[str, str] | None = None) -> str:
    """Return the singular form of a plural name.

    Names that do not look plural are returned unchanged.
    """
    for singular, plural in _forms(forms).items():
        if name.endswith(plural):
            return name[: len(name) - len(plural)] + singular
        if name.endswith(_ucfirst(plural)):
            return name[: len(name) - len(plural)] + _ucfirst(singular)
        # already singular
        if name.endswith(singular) or name.endswith(_ucfirst(singular)):
            return name

    result = _CONSONANT_IES.sub(r"\1y", name)
    if result != name:
        return result

    if name.endswith("ses"):
        return name[:-2]

    if name.endswith("s") and not name.endswith(("ss", "us", "is")):
        return name[:-1]

    return name


def set_plural_form(singular: str, plural: str) -> None:
    """Register an irregular plural form module-wide."""
    PLURAL_FORMS[singular] = plural


def set_plural_forms(data: Mapping[str, str]) -> None:
    """Register several irregular plural forms module-wide."""
    for singular, plural in data.items():
        PLURAL_FORMS[singular] = plural


def to_camel_case(s: str) -> str:
    """snake_case to camelCase; the first character is left alone."""
    return re.sub(r"_(\w)", lambda m: m.group(1).upper(), s)


def to_pascal_case(s: str) -> str:
    """snake_case or camelCase to PascalCase."""
    return _ucfirst(to_camel_case(s))


def to_snake_case(s: str) -> str:
    """camelCase or PascalCase to snake_case."""
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s)
    s = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", s)
    return s.lower()
