"""
SQL text processing and statement builders.

Statements are scanned once into tokens so that string literals, quoted
identifiers and comments are never mistaken for placeholders or keywords:

    SQL → Tokenize → (escape literal %, classify statement, count placeholders)

Main entry points:
- `prepare_query(sql, args)` - Normalize SQL and arguments for psycopg
- `is_read_statement(sql)` - Check a statement only reads data
- `quote_identifier()` / `quote_table()` - Quote column and table names
- `build_insert_sql()` / `build_update_sql()` - Multi-row write statements

Only the psycopg ``%s`` / ``%(name)s`` placeholder styles are recognized. A
bare ``?`` is the hstore key-exists operator and is left alone.
"""
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from libb import issequence

# =============================================================================
# Data Structures
# =============================================================================


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    QUOTED_IDENT = auto()
    COMMENT = auto()
    POSITIONAL_PH = auto()      # %s
    NAMED_PH = auto()           # %(name)s


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    start: int
    end: int


# =============================================================================
# Regex Patterns
# =============================================================================

_TOKENIZE = re.compile(r"""
    (?P<string>(?<!\w)[eE]'(?:[^'\\]|''|\\.)*'|'(?:[^']|'')*'|\$(?P<tag>\w*)\$.*?\$(?P=tag)\$)
    |(?P<ident>"(?:[^"]|"")*")
    |(?P<comment>--[^\n]*|/\*.*?\*/)
    |(?P<named>%\((?P<pname>[^)]+)\)s)
    |(?P<percent_s>%s)
""", re.VERBOSE | re.DOTALL)

_UNESCAPED_PERCENT = re.compile(r'(?<!%)%(?![%s(])')
_LONE_PERCENT = re.compile(r'(?<!%)%(?!%)')

_WORD = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')

_READ_KEYWORDS = frozenset({'SELECT', 'WITH', 'VALUES', 'TABLE'})
# a data-modifying statement opening a CTE body or following the CTE list
_CTE_WRITE = re.compile(r"""
    (?: \bAS \s+ (?:NOT \s+)? (?:MATERIALIZED \s+)? \( | \) )
    \s* (?:INSERT|UPDATE|DELETE|MERGE) \b
""", re.VERBOSE | re.IGNORECASE)


# =============================================================================
# Core Functions
# =============================================================================

def tokenize_sql(sql: str) -> list[Token]:
    """Parse SQL into tokens in a single pass.

    Parameters
        sql: SQL query string

    Returns
        List of tokens preserving all SQL text
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()

        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start], last_end, start))

        if match.group('string'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('ident'):
            ttype = TokenType.QUOTED_IDENT
        elif match.group('comment'):
            ttype = TokenType.COMMENT
        elif match.group('named'):
            ttype = TokenType.NAMED_PH
        else:
            ttype = TokenType.POSITIONAL_PH

        tokens.append(Token(ttype, match.group(0), start, end))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:], last_end, len(sql)))

    return tokens


def has_placeholders(sql: str | None) -> bool:
    """Check if SQL has %s or %(name)s placeholders outside literals and comments.
    """
    if not sql or '%' not in sql:
        return False
    return any(t.type in {TokenType.POSITIONAL_PH, TokenType.NAMED_PH}
               for t in tokenize_sql(sql))


def escape_percent_signs(sql: str) -> str:
    """Double every percent sign that is not part of a placeholder.

    psycopg interprets ``%`` anywhere in the statement whenever parameters are
    passed, so ``like 'a%'`` and the modulo operator must be written as ``%%``.
    Inside literals, quoted identifiers and comments even ``%s`` is text.
    """
    if not sql or '%' not in sql:
        return sql

    result = []
    for token in tokenize_sql(sql):
        if token.type == TokenType.SQL_TEXT:
            result.append(_UNESCAPED_PERCENT.sub('%%', token.text))
        elif token.type in {TokenType.POSITIONAL_PH, TokenType.NAMED_PH}:
            result.append(token.text)
        else:
            result.append(_LONE_PERCENT.sub('%%', token.text))
    return ''.join(result)


def _unwrap_nested_parameters(sql: str, args: tuple) -> Any:
    """Unwrap a single list/tuple argument that carries all the parameters."""
    if len(args) != 1:
        return args

    first = args[0]
    if isinstance(first, Mapping):
        return first
    if not issequence(first) or isinstance(first, str):
        return args

    positional = sum(t.type == TokenType.POSITIONAL_PH for t in tokenize_sql(sql))
    if len(first) == positional:
        return tuple(first)

    return args


def prepare_query(sql: str, args: tuple | list | dict | None) -> tuple[str, Any]:
    """Normalize a statement and its arguments for execution.

    Parameters
        sql: SQL with %s or %(name)s placeholders
        args: Positional arguments, a single sequence, or a single mapping

    Returns
        Tuple of (sql, params) where params is None when the statement has no
        placeholders
    """
    if not args or not has_placeholders(sql):
        return sql, None

    if isinstance(args, Mapping):
        params = args
    else:
        params = _unwrap_nested_parameters(sql, tuple(args))

    return escape_percent_signs(sql), params


# =============================================================================
# Statement Classification
# =============================================================================

def _significant_text(sql: str) -> str:
    """SQL text with literals, quoted identifiers and comments blanked out."""
    return ' '.join(t.text for t in tokenize_sql(sql)
                    if t.type in {TokenType.SQL_TEXT, TokenType.POSITIONAL_PH,
                                  TokenType.NAMED_PH})


def statement_keyword(sql: str) -> str | None:
    """Return the leading keyword of a statement, uppercased.

    Leading comments, whitespace and opening parentheses are skipped.

    >>> statement_keyword('  -- comment\\n (select 1)')
    'SELECT'
    >>> statement_keyword('') is None
    True
    """
    text = _significant_text(sql or '')
    match = _WORD.search(text.lstrip(' \t\r\n('))
    if match is None or match.start() != 0:
        return None
    return match.group(0).upper()


def is_read_statement(sql: str) -> bool:
    """Check whether a statement only reads data.

    A statement is a read when it starts with SELECT, WITH, VALUES or TABLE,
    contains a single statement, and (for WITH) neither a CTE body nor the
    main statement is an INSERT, UPDATE, DELETE or MERGE.

    >>> is_read_statement("select * from parcels where name = 'delete me'")
    True
    >>> is_read_statement('with d as (delete from t returning *) select * from d')
    False
    >>> is_read_statement('with a as (select 1 as x) select x as update from a')
    True
    >>> is_read_statement('update t set a = 1')
    False
    """
    keyword = statement_keyword(sql)
    if keyword not in _READ_KEYWORDS:
        return False

    text = _significant_text(sql)
    if [s for s in text.split(';') if s.strip()][1:]:
        return False

    if keyword == 'WITH' and _CTE_WRITE.search(text):
        return False
    words = {w.upper() for w in _WORD.findall(text)}
    # select ... into creates a table
    return 'INTO' not in words


# =============================================================================
# Identifiers
# =============================================================================

def quote_identifier(identifier: str) -> str:
    """Safely quote a database identifier.

    >>> quote_identifier('my"col')
    '"my""col"'
    """
    return '"' + identifier.replace('"', '""') + '"'


def split_table_name(table: str | Sequence[str]) -> tuple[str | None, str]:
    """Split a table reference into (schema, name).

    Accepts ``'name'``, ``'schema.name'`` or a ``(schema, name)`` pair. Names
    that are already double-quoted keep their inner dots.

    >>> split_table_name('public.parcels')
    ('public', 'parcels')
    >>> split_table_name(('gis', 'roads'))
    ('gis', 'roads')
    >>> split_table_name('"odd.name"')
    (None, 'odd.name')
    """
    if not isinstance(table, str):
        schema, name = table
        return schema, name

    parts = re.findall(r'"((?:[^"]|"")*)"|([^.]+)', table)
    names = [quoted.replace('""', '"') if quoted else bare.strip() for quoted, bare in parts]
    if len(names) == 1:
        return None, names[0]
    if len(names) == 2:
        return names[0], names[1]
    raise ValueError(f'Invalid table name: {table!r}')


def quote_table(table: str | Sequence[str]) -> str:
    """Quote a possibly schema-qualified table reference.

    >>> quote_table('public.parcels')
    '"public"."parcels"'
    """
    schema, name = split_table_name(table)
    if schema is None:
        return quote_identifier(name)
    return f'{quote_identifier(schema)}.{quote_identifier(name)}'


# =============================================================================
# Statement Builders
# =============================================================================

def make_placeholders(count: int, casts: Sequence[str | None] | None = None) -> str:
    """Comma-separated %s placeholders, each optionally cast.

    >>> make_placeholders(3, [None, 'geometry', 'hstore'])
    '%s, %s::geometry, %s::hstore'
    """
    if casts is None:
        casts = [None] * count
    return ', '.join(f'%s::{cast}' if cast else '%s' for cast in casts)


def build_insert_sql(table: str | Sequence[str], columns: Sequence[str], row_count: int,
                     casts: Mapping[str, str] | None = None) -> str:
    """Build a single multi-row INSERT statement.

    Parameters
        table: Target table reference
        columns: Columns in parameter order
        row_count: Number of VALUES tuples
        casts: Optional column -> SQL type casts applied to placeholders

    Returns
        INSERT statement with ``row_count * len(columns)`` placeholders
    """
    casts = casts or {}
    quoted_cols = ', '.join(quote_identifier(col) for col in columns)
    row = f'({make_placeholders(len(columns), [casts.get(col) for col in columns])})'
    values = ', '.join([row] * row_count)
    return f'INSERT INTO {quote_table(table)} ({quoted_cols}) VALUES {values}'


def build_update_sql(table: str | Sequence[str], columns: Sequence[str],
                     id_cols: Sequence[str], update_cols: Sequence[str], row_count: int,
                     casts: Mapping[str, str] | None = None,
                     hstore_cols: Sequence[str] = (), hstore_concat: bool = True) -> str:
    """Build an UPDATE ... FROM (VALUES ...) statement matching rows on ``id_cols``.

    Hstore columns among ``update_cols`` are merged with ``||`` when
    ``hstore_concat`` is true, leaving target keys missing from the source in
    place and keeping the target value when the source cell is NULL. Otherwise
    they are replaced like any other column.

    Parameters
        table: Target table reference
        columns: Source columns in parameter order (id_cols + update_cols)
        id_cols: Columns compared for equality
        update_cols: Columns assigned from the source
        row_count: Number of VALUES tuples
        casts: Optional column -> SQL type casts applied to placeholders
        hstore_cols: Columns holding hstore values
        hstore_concat: Merge rather than replace hstore columns

    Returns
        UPDATE statement with ``row_count * len(columns)`` placeholders
    """
    casts = casts or {}
    target = quote_table(table)
    row = f'({make_placeholders(len(columns), [casts.get(col) for col in columns])})'
    values = ', '.join([row] * row_count)
    alias_cols = ', '.join(quote_identifier(col) for col in columns)

    assignments = []
    for col in update_cols:
        qcol = quote_identifier(col)
        if hstore_concat and col in hstore_cols:
            assignments.append(
                f'{qcol} = case when s.{qcol} is null then t.{qcol} '
                f"else coalesce(t.{qcol}, ''::hstore) || s.{qcol} end")
        else:
            assignments.append(f'{qcol} = s.{qcol}')

    conditions = ' and '.join(f't.{quote_identifier(col)} = s.{quote_identifier(col)}'
                              for col in id_cols)

    return (f"UPDATE {target} AS t SET {', '.join(assignments)} "
            f'FROM (VALUES {values}) AS s ({alias_cols}) '
            f'WHERE {conditions}')


if __name__ == '__main__':
    __import__('doctest').testmod(optionflags=4 | 8 | 32)
