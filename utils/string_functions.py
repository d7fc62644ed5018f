"""
String helpers for Data Searches.

Name substitution and sanitising for output folders, files and layers, plus
column list handling for the summary statistics and a small translator from
the SQL-style where clauses used in profiles to pandas query strings.

Functions:
    replace_search_strings: Substitute %ref%, %sitename% etc. in a template
    strip_illegals: Replace characters that are illegal in file names
    keep_numbers_and_spaces: Reduce a reference to its numeric parts
    get_subref: Final part of a short reference
    format_group_columns: Normalise a group column list to ';' separators
    split_columns: Split a ',' or ';' separated column list
    align_stats_columns: Add FIRST statistics for unsummarised output columns
    build_search_clause: Where clause finding a search reference
    where_to_query: Convert a SQL where clause to a pandas query string
"""

import re
from typing import List, Optional

ILLEGAL_CHARS = '\\/:*?"<>|'

SEARCH_STRINGS = ('%ref%', '%sitename%', '%shortref%', '%subref%', '%radius%')


def replace_search_strings(
    text: Optional[str],
    reference: str,
    site_name: Optional[str],
    short_ref: str,
    subref: str,
    radius: str
) -> str:
    """
    Substitute the search placeholders in a configured name.

    Placeholders are matched case-insensitively:
    %ref%, %sitename%, %shortref%, %subref%, %radius%

    Example:
        >>> replace_search_strings('%ref%_%radius%', 'DS-123', '', '123', '123', '1km')
        'DS-123_1km'
    """
    if not text:
        return ''

    values = (reference, site_name or '', short_ref, subref, radius)
    for placeholder, value in zip(SEARCH_STRINGS, values):
        text = re.sub(re.escape(placeholder), lambda _m, v=value: v, text, flags=re.IGNORECASE)
    return text


def strip_illegals(text: Optional[str], rep_char: str, is_file: bool = False) -> str:
    """
    Replace characters that cannot appear in file or folder names.

    Dots are also replaced unless the text is a file name (where the dot
    separates the extension).
    """
    if not text:
        return ''

    illegal = ILLEGAL_CHARS if is_file else ILLEGAL_CHARS + '.'
    return ''.join(rep_char if ch in illegal else ch for ch in text)


def keep_numbers_and_spaces(text: str, rep_char: str) -> str:
    """Keep only digits, spaces and the replacement character."""
    kept = ''.join(ch for ch in text if ch.isdigit() or ch == ' ' or ch in rep_char)
    return kept.strip()


def get_subref(short_ref: str, rep_char: str) -> str:
    """
    Return the last part of a short reference.

    Example:
        >>> get_subref('2024_0042', '_')
        '0042'
    """
    if not rep_char or rep_char not in short_ref:
        return short_ref
    parts = [p for p in short_ref.split(rep_char) if p]
    return parts[-1] if parts else short_ref


def split_columns(text: Optional[str]) -> List[str]:
    """Split a comma or semicolon separated column list, dropping blanks."""
    if not text:
        return []
    return [c.strip() for c in re.split(r'[;,]', text) if c.strip()]


def format_group_columns(text: Optional[str]) -> str:
    """Normalise a group column list to trimmed, ';' separated names."""
    return ';'.join(split_columns(text))


def align_stats_columns(
    columns: Optional[str],
    stats_columns: Optional[str],
    group_columns: Optional[str]
) -> str:
    """
    Make sure every output column is either grouped or summarised.

    Only applies when grouping is configured. Output columns that are not
    group columns, already have a statistic, or are literal quoted values get
    a ``FIRST`` statistic so they survive summary statistics.

    Example:
        >>> align_stats_columns('Taxon,Count,Year', 'Count SUM', 'Taxon')
        'Count SUM;Year FIRST'
    """
    stats = [s.strip() for s in (stats_columns or '').split(';') if s.strip()]
    groups = [g.lower() for g in split_columns(group_columns)]
    if not groups:
        return ';'.join(stats)

    summarised = {s.split()[0].lower() for s in stats}
    for column in (columns or '').split(','):
        column = column.strip()
        if not column or column.startswith('"'):
            continue
        lowered = column.lower()
        if lowered in groups or lowered in summarised or lowered == 'frequency':
            continue
        stats.append(f'{column} FIRST')
        summarised.add(lowered)

    return ';'.join(stats)


_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<string>'(?:[^']|'')*')
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op><>|!=|>=|<=|=|<|>|\(|\)|,)
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<quoted>"[^"]+")
    )""",
    re.VERBOSE
)

_KEYWORDS = {'AND': 'and', 'OR': 'or', 'NOT': 'not'}


def _tokenize(clause: str) -> List[tuple]:
    tokens = []
    pos = 0
    clause = clause.strip()
    while pos < len(clause):
        match = _TOKEN_RE.match(clause, pos)
        if not match or match.end() == pos:
            raise ValueError(f"Unsupported syntax in where clause at: {clause[pos:]!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


def _like_to_regex(pattern: str) -> str:
    regex = re.escape(pattern).replace('%', '.*').replace('_', '.')
    return f'^{regex}$'


def _join_query(parts: List[str]) -> str:
    """Join query parts with spaces, except inside brackets and before commas."""
    query = ''
    previous = None
    for part in parts:
        if previous is not None and previous not in ('(', '[') and part not in (')', ']', ','):
            query += ' '
        query += part
        previous = part
    return query


def build_search_clause(column: str, reference: str) -> str:
    """
    Build the where clause that finds a search reference.

    Example:
        >>> build_search_clause('ref', "O'Neil 12")
        "ref = 'O''Neil 12'"
    """
    escaped = reference.replace("'", "''")
    return f"{column} = '{escaped}'"


def where_to_query(clause: Optional[str]) -> str:
    """
    Convert a SQL where clause to a pandas ``DataFrame.query`` expression.

    Supports comparison operators, AND/OR/NOT, IN lists, IS [NOT] NULL and
    LIKE with % and _ wildcards. Column names may be bare or double quoted.

    Example:
        >>> where_to_query("Status = 'SSSI' AND Area <> 0")
        "`Status` == 'SSSI' and `Area` != 0"

    Raises:
        ValueError: If the clause uses syntax outside that subset.
    """
    if not clause or not clause.strip():
        return ''

    tokens = _tokenize(clause)
    out: List[str] = []
    i = 0
    while i < len(tokens):
        kind, value = tokens[i]
        upper = value.upper() if kind == 'word' else None

        if kind == 'word' and upper in _KEYWORDS:
            out.append(_KEYWORDS[upper])
        elif kind == 'word' and upper == 'IS':
            negate = i + 1 < len(tokens) and tokens[i + 1][1].upper() == 'NOT'
            j = i + 2 if negate else i + 1
            if j >= len(tokens) or tokens[j][1].upper() != 'NULL' or not out:
                raise ValueError(f"Malformed IS NULL test in where clause: {clause!r}")
            column = out.pop()
            method = 'notna' if negate else 'isna'
            out.append(f'{column}.{method}()')
            i = j
        elif kind == 'word' and upper == 'LIKE':
            if i + 1 >= len(tokens) or tokens[i + 1][0] != 'string' or not out:
                raise ValueError(f"LIKE must be followed by a quoted pattern: {clause!r}")
            column = out.pop()
            negate = column == 'not'
            if negate:
                if not out:
                    raise ValueError(f"NOT LIKE must follow a column name: {clause!r}")
                column = out.pop()
            pattern = tokens[i + 1][1][1:-1].replace("''", "'")
            match = f'{column}.astype("str").str.match({_like_to_regex(pattern)!r})'
            out.append(f'~{match}' if negate else match)
            i += 1
        elif kind == 'word' and upper == 'IN':
            out.append('in')
            if i + 1 < len(tokens) and tokens[i + 1][1] == '(':
                out.append('[')
                i += 2
                while i < len(tokens) and tokens[i][1] != ')':
                    item_kind, item = tokens[i]
                    if item_kind == 'string':
                        out.append(repr(item[1:-1].replace("''", "'")))
                    else:
                        out.append(item)
                    i += 1
                out.append(']')
        elif kind == 'word' and upper in ('TRUE', 'FALSE'):
            out.append(upper.capitalize())
        elif kind == 'word':
            out.append(f'`{value}`')
        elif kind == 'quoted':
            out.append(f'`{value[1:-1]}`')
        elif kind == 'string':
            out.append(repr(value[1:-1].replace("''", "'")))
        elif kind == 'op':
            out.append({'=': '==', '<>': '!='}.get(value, value))
        else:
            out.append(value)
        i += 1

    return _join_query(out)
