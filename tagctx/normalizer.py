"""
Tag input normalization.

Turns raw tag input into ordered lists of tag names:

    >>> parse_tags("cat, dogs")
    ['cat', 'dogs']
    >>> parse_tags('hello, "foo, bar"')
    ['hello', 'foo, bar']

Strings are read as a single CSV record so that quoted tags may contain
commas. Lists are passed through untouched; `clean_tags` is what the write
path applies before anything reaches the tag cache.
"""
import csv
import io
import re
from typing import Any, Iterable, List

from tagctx.errors import MalformedTagInput

# csv cannot read `hello, "foo"`, only `hello,"foo"`
_COMMA_BEFORE_QUOTE = re.compile(r',\s+"')

_STRIP_CHARS = ' \t\r\n"'


def _unique(names: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result


def _read_record(value: str) -> List[str]:
    """Split a string into CSV fields on commas only; line breaks stay in the field."""
    fields: List[str] = []
    for row in csv.reader(io.StringIO(value)):
        row = row or [""]
        if fields:
            # csv ended a record at the line break; join it back
            fields[-1] += "\n" + row[0]
            fields.extend(row[1:])
        else:
            fields.extend(row)
    return fields


def parse_tags(value: Any) -> List[str]:
    """
    Parse tag input into an ordered list of tag names.

    Args:
        value: Comma separated string or a list/tuple of names

    Returns:
        List of tag names in first-seen order

    Raises:
        MalformedTagInput: If value is neither a string nor a list
    """
    if isinstance(value, (list, tuple)):
        return list(value)

    if not isinstance(value, str):
        raise MalformedTagInput(value)

    if not value:
        return []

    value = _COMMA_BEFORE_QUOTE.sub(',"', value)
    tokens = []
    for token in _read_record(value):
        token = token.strip(_STRIP_CHARS)
        if token:
            tokens.append(token)

    return _unique(tokens)


def clean_tags(names: Iterable[Any]) -> List[str]:
    """
    Trim, drop blanks and deduplicate a list of tag names.

    Raises:
        MalformedTagInput: If an element is not a string
    """
    cleaned = []
    for name in names:
        if name is None:
            continue
        if not isinstance(name, str):
            raise MalformedTagInput(name)
        name = name.strip()
        if name:
            cleaned.append(name)
    return _unique(cleaned)


def normalize_tags_list(value: Any) -> List[str]:
    """
    Coerce query input to a list of tag names.

    A bare string is a single tag name here; it is not split on commas.
    """
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    raise MalformedTagInput(value)
