"""
Field and type name translation between the wire format and internal names

Internal names are camelCase (``someText``, ``typedModel``), the wire
format is configured with a list of inflectors that are applied in order,
f.i. ``["pluralize", "dasherize"]`` turns ``typedModel`` into ``typed-models``.
Deserialization applies the inverse inflectors in reverse order.
"""

import re
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import inflect

_inflect = inflect.engine()

# the last word of an identifier: "Model" in "typedModel", "model" in "typed-model"
LAST_WORD_RE = re.compile(r"([A-Z]?[a-z0-9]+|[A-Z]+)$")


def camelize(word: str) -> str:
    """some-text, some_text => someText"""
    return re.sub(r"[-_]+([A-Za-z0-9])", lambda match: match.group(1).upper(), word)


def underscore(word: str) -> str:
    """someText, some-text => some_text"""
    word = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", word)
    return word.replace("-", "_").lower()


def dasherize(word: str) -> str:
    """someText, some_text => some-text"""
    return underscore(word).replace("_", "-")


def _split_last_word(word: str) -> Tuple[str, str]:
    match = LAST_WORD_RE.search(word)
    if match is None:
        return "", word
    return word[: match.start()], match.group(0)


def _match_case(original: str, inflected: str) -> str:
    if original.isupper() and len(original) > 1:
        return inflected.upper()
    if original[:1].isupper():
        return inflected[:1].upper() + inflected[1:]
    return inflected


def pluralize(word: str) -> str:
    """planet => planets, typedModel => typedModels"""
    head, last = _split_last_word(word)
    if not last:
        return word
    return head + _match_case(last, _inflect.plural_noun(last.lower()))


def singularize(word: str) -> str:
    """planets => planet, typed-models => typed-model"""
    head, last = _split_last_word(word)
    if not last:
        return word
    singular = _inflect.singular_noun(last.lower())
    if not singular:
        # not a plural noun
        return word
    return head + _match_case(last, singular)


INFLECTORS: Dict[str, Callable[[str], str]] = {
    "camelize": camelize,
    "dasherize": dasherize,
    "underscore": underscore,
    "pluralize": pluralize,
    "singularize": singularize,
}

INVERSE_INFLECTORS = {
    "camelize": "dasherize",
    "dasherize": "camelize",
    "underscore": "camelize",
    "pluralize": "singularize",
    "singularize": "pluralize",
}


def _check_inflectors(names: Iterable[str]) -> Tuple[str, ...]:
    names = tuple(names)
    for name in names:
        if name not in INFLECTORS:
            raise ValueError(f"Unknown inflector '{name}', expected one of: {', '.join(INFLECTORS)}")
    return names


class InflectionSerializer:
    """
    Translate names between their internal and wire representation

    :param inflectors: inflector names applied by `serialize`
    :param deserialization_inflectors: inflector names applied by `deserialize`,
        defaults to the inverse of `inflectors` in reverse order
    :param overrides: per type mapping {type: {internal name: wire name}}, consulted
        before inflection in both directions
    """

    def __init__(
        self,
        inflectors: Sequence[str] = (),
        deserialization_inflectors: Optional[Sequence[str]] = None,
        overrides: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> None:
        self.inflectors = _check_inflectors(inflectors)
        if deserialization_inflectors is None:
            deserialization_inflectors = [INVERSE_INFLECTORS[name] for name in reversed(self.inflectors)]
        self.deserialization_inflectors = _check_inflectors(deserialization_inflectors)
        self.overrides: Dict[Optional[str], Dict[str, str]] = {}
        self.inverse_overrides: Dict[Optional[str], Dict[str, str]] = {}
        for type_name, names in (overrides or {}).items():
            self.overrides[type_name] = dict(names)
            self.inverse_overrides[type_name] = {wire: internal for internal, wire in names.items()}

    def serialize(self, name: str, type: Optional[str] = None) -> str:
        override = self.overrides.get(type, {}).get(name)
        if override is not None:
            return override
        for inflector in self.inflectors:
            name = INFLECTORS[inflector](name)
        return name

    def deserialize(self, name: str, type: Optional[str] = None) -> str:
        override = self.inverse_overrides.get(type, {}).get(name)
        if override is not None:
            return override
        for inflector in self.deserialization_inflectors:
            name = INFLECTORS[inflector](name)
        return name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(inflectors={list(self.inflectors)})"
