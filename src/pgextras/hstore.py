"""
PostgreSQL hstore text codec and pandas accessor.

The hstore text format is a comma-separated list of ``key=>value`` pairs.
Keys and values are double-quoted with ``"`` and ``\\`` backslash-escaped; a
value may also be the bare word NULL::

    "name"=>"Lac Léman", "depth"=>"310", "note"=>NULL

`parse_hstore` and `format_hstore` convert between that text and plain dicts.
In a record set every row holds an `Hstore` cell, a dict whose missing keys
read as None and where assigning None deletes the key. The ``hstore`` series
accessor applies the same lookup and assignment to a whole column:

    >>> tags = pd.Series([Hstore(es='hola'), Hstore(fr='oui')])
    >>> tags.hstore['es'].tolist()
    ['hola', None]
    >>> tags.hstore['es'] = None
    >>> tags.hstore['es'].tolist()
    [None, None]
"""
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd
from pgextras.exceptions import DecodeError

logger = logging.getLogger(__name__)

__all__ = [
    'Hstore',
    'HstoreAccessor',
    'parse_hstore',
    'format_hstore',
    'decode_hstore',
    'encode_hstore',
]

_PAIR = re.compile(r"""
    \s*
    (?:"(?P<qkey>(?:[^"\\]|\\.)*)"|(?P<key>[^\s"=>,]+))
    \s*=>\s*
    (?:"(?P<qvalue>(?:[^"\\]|\\.)*)"|(?P<value>[^\s",]+))
    \s*(?:,|$)
""", re.VERBOSE | re.DOTALL)

_ESCAPED = re.compile(r'\\(.)', re.DOTALL)


def _is_missing(value: Any) -> bool:
    """None, NaN, NaT or pd.NA."""
    return value is None or (pd.api.types.is_scalar(value) and bool(pd.isna(value)))


def _unescape(text: str) -> str:
    return _ESCAPED.sub(r'\1', text)


def _escape(text: str) -> str:
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def parse_hstore(text: str) -> dict[str, str | None]:
    """Parse hstore text into a dict.

    A bare NULL (any case) becomes None; a quoted "NULL" is the string.

    >>> parse_hstore('"a"=>"1", b=>NULL, "c"=>"NULL"')
    {'a': '1', 'b': None, 'c': 'NULL'}
    >>> parse_hstore('')
    {}

    Raises
        DecodeError: If the text is not valid hstore
    """
    result: dict[str, str | None] = {}
    pos = 0
    length = len(text)

    while pos < length and text[pos:].strip():
        match = _PAIR.match(text, pos)
        if match is None or match.end() == pos:
            raise DecodeError(f'Invalid hstore text at position {pos}: {text[pos:pos + 30]!r}')

        key = _unescape(match.group('qkey')) if match.group('qkey') is not None else match.group('key')
        if match.group('qvalue') is not None:
            value = _unescape(match.group('qvalue'))
        elif match.group('value').upper() == 'NULL':
            value = None
        else:
            value = match.group('value')

        result[key] = value
        pos = match.end()

    return result


def format_hstore(mapping: Mapping[Any, Any]) -> str:
    """Format a mapping as hstore text.

    Keys and values are converted with str(); None values become NULL.

    >>> format_hstore({'a': '1', 'q"t': None})
    '"a"=>"1", "q\\\\"t"=>NULL'
    >>> format_hstore({})
    ''
    """
    return ', '.join(
        f'{_escape(str(key))}=>{"NULL" if value is None else _escape(str(value))}'
        for key, value in mapping.items()
    )


class Hstore(dict):
    """One hstore cell.

    Keys and values are strings. Looking up an absent key returns None rather
    than raising, and assigning None to a key removes it:

    >>> cell = Hstore({'es': 'hola'})
    >>> cell['de'] is None
    True
    >>> cell['es'] = None
    >>> cell
    Hstore({})
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.update(*args, **kwargs)

    def __missing__(self, key: Any) -> None:
        return None

    def __setitem__(self, key: Any, value: Any) -> None:
        if _is_missing(value):
            self.pop(str(key), None)
            return
        super().__setitem__(str(key), str(value))

    def update(self, *args: Any, **kwargs: Any) -> None:
        for key, value in dict(*args, **kwargs).items():
            self[key] = value

    def __ior__(self, other: Any) -> 'Hstore':
        self.update(other)
        return self

    def __or__(self, other: Any) -> 'Hstore':
        merged = self.copy()
        merged.update(other)
        return merged

    def setdefault(self, key: Any, default: Any = None) -> str | None:
        if str(key) not in self:
            self[key] = default
        return self[key]

    def copy(self) -> 'Hstore':
        return Hstore(self)

    def __repr__(self) -> str:
        return f'Hstore({dict.__repr__(self)})'

    def to_text(self) -> str:
        return format_hstore(self)


def decode_hstore(value: Any) -> Hstore:
    """Decode one wire value into a cell; SQL NULL becomes an empty cell.

    Values already turned into mappings by a driver adapter are wrapped as-is.
    """
    if _is_missing(value):
        return Hstore()
    if isinstance(value, Mapping):
        return Hstore(value)
    if isinstance(value, bytes):
        value = value.decode()
    if not isinstance(value, str):
        raise DecodeError(f'Cannot decode {type(value).__name__} as hstore')
    return Hstore(parse_hstore(value))


def encode_hstore(value: Any) -> str | None:
    """Encode one cell as hstore text; missing values become SQL NULL.

    Strings are taken to be hstore text already and are validated.
    """
    if isinstance(value, Mapping):
        return format_hstore(value)
    if isinstance(value, str):
        parse_hstore(value)
        return value
    if _is_missing(value):
        return None
    raise DecodeError(f'Cannot encode {type(value).__name__} as hstore')


def is_hstore_series(series: pd.Series) -> bool:
    """True when every non-missing value of the series is a mapping."""
    if series.dtype != object:
        return False
    values = [v for v in series if not _is_missing(v)]
    return bool(values) and all(isinstance(v, Mapping) for v in values)


@pd.api.extensions.register_series_accessor('hstore')
class HstoreAccessor:
    """Keyed access to a column of hstore cells.

    Lookups return a Series aligned with the (possibly positionally subset)
    column. Assignments mutate the targeted cells in place, so assigning
    through ``df['tags'].iloc[:2].hstore[...]`` changes the first two cells of
    ``df``. A missing cell is replaced by a new `Hstore` in the accessed
    Series only.
    """

    def __init__(self, series: pd.Series) -> None:
        self._obj = series

    def __getitem__(self, key: str | list[str]) -> pd.Series | pd.DataFrame:
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def get(self, key: str | list[str]) -> pd.Series | pd.DataFrame:
        """Value under key for each cell, None where the key is absent.

        A list of keys returns a DataFrame with one column per key.
        """
        if not isinstance(key, str) and isinstance(key, Iterable):
            return pd.DataFrame({k: self.get(k) for k in key}, index=self._obj.index)
        values = [cell.get(key) if isinstance(cell, Mapping) else None for cell in self._obj]
        return pd.Series(values, index=self._obj.index, name=key, dtype=object)

    def set(self, key: str, value: Any) -> None:
        """Set key in every cell; a None value removes the key.

        ``value`` is a scalar applied to all cells, a Series aligned on the
        index, or a sequence with one value per cell.
        """
        for pos, (cell, val) in enumerate(zip(self._obj, self._align(value))):
            if isinstance(cell, Hstore):
                cell[key] = val
            elif isinstance(cell, Mapping):
                if _is_missing(val):
                    cell.pop(key, None)
                else:
                    cell[key] = str(val)
            elif not _is_missing(val):
                self._obj.iat[pos] = Hstore({key: val})

    def delete(self, key: str) -> None:
        """Remove key from every cell."""
        self.set(key, None)

    def contains(self, key: str) -> pd.Series:
        """Whether each cell has key."""
        return pd.Series([isinstance(cell, Mapping) and key in cell for cell in self._obj],
                         index=self._obj.index, name=key, dtype=bool)

    def keys(self) -> list[str]:
        """Sorted union of keys across cells."""
        return sorted({key for cell in self._obj if isinstance(cell, Mapping) for key in cell})

    def to_frame(self) -> pd.DataFrame:
        """Expand the cells into one column per key."""
        return self.get(self.keys())

    def to_text(self) -> pd.Series:
        """Hstore text for each cell."""
        return pd.Series([encode_hstore(cell) for cell in self._obj],
                         index=self._obj.index, name=self._obj.name, dtype=object)

    def _align(self, value: Any) -> list[Any]:
        if isinstance(value, pd.Series):
            return value.reindex(self._obj.index).tolist()
        if not isinstance(value, (str, Mapping)) and isinstance(value, Iterable):
            values = list(value)
            if len(values) != len(self._obj):
                raise ValueError(f'Length of values ({len(values)}) does not match '
                                 f'length of column ({len(self._obj)})')
            return values
        return [value] * len(self._obj)
