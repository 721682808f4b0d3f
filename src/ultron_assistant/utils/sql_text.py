"""
Lightweight SQL text helpers.

The assistant only handles single SELECT statements produced by the
generator, so a regex-based approach is enough. The one thing plain regexes
get wrong is nesting: a WHERE inside a subquery or a keyword inside a
string literal must not be mistaken for a top-level clause. mask_nested()
solves that by blanking out everything that is quoted or parenthesized
while keeping character offsets intact, so a regex run on the mask returns
positions that are valid in the original text.
"""

import re
from typing import List, NamedTuple, Optional, Tuple

# Clauses that end a WHERE predicate, in the order PostgreSQL accepts them
CLAUSES_AFTER_WHERE = ("GROUP BY", "HAVING", "WINDOW", "ORDER BY", "LIMIT", "OFFSET", "FETCH", "FOR")

SET_OPERATIONS = ("UNION", "INTERSECT", "EXCEPT")

# Joins whose ON condition can only remove rows of the joined table
ON_FILTERED_JOINS = {"JOIN", "INNER JOIN", "LEFT JOIN", "LEFT OUTER JOIN"}

# Words that can follow "FROM table" but are never an alias
NON_ALIAS_WORDS = {
    "WHERE", "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "NATURAL", "ON",
    "GROUP", "HAVING", "WINDOW", "ORDER", "LIMIT", "OFFSET", "FETCH", "FOR",
    "UNION", "INTERSECT", "EXCEPT", "USING", "LATERAL",
}

_FROM_PATTERN = re.compile(
    r'\bFROM\s+(?:(\w+)\.)?(\w+)(?:\s+(?:AS\s+)?(\w+))?',
    re.IGNORECASE
)
_TABLE_REF_PATTERN = re.compile(r'\b(?:FROM|JOIN)\s+(?:\w+\.)?(\w+)', re.IGNORECASE)
_LIMIT_PATTERN = re.compile(r'\bLIMIT\s+(\d+)', re.IGNORECASE)
_FROM_FUNCTION_PATTERN = re.compile(r'\b(?:EXTRACT|SUBSTRING|TRIM|OVERLAY|POSITION)\s*\(', re.IGNORECASE)
_SET_OPERATION_PATTERN = re.compile(r'\b(UNION|INTERSECT|EXCEPT)\b', re.IGNORECASE)
_SUBQUERY_START_PATTERN = re.compile(r'\(\s*SELECT\b', re.IGNORECASE)
_SOURCE_SEPARATOR_PATTERN = re.compile(
    r',|\b(?:NATURAL\s+)?(?:(?:INNER|CROSS|LEFT|RIGHT|FULL)\s+)?(?:OUTER\s+)?JOIN\b',
    re.IGNORECASE
)
_SOURCE_PATTERN = re.compile(
    r'\s*(?:LATERAL\s+)?(?:(\(\s*\))|(?:\w+\.)?(\w+))(?:\s+(?:AS\s+)?(\w+))?',
    re.IGNORECASE
)
_ON_PATTERN = re.compile(r'\s*\bON\b\s*', re.IGNORECASE)


class TableSource(NamedTuple):
    """One item of a FROM clause: the first table, or a joined one."""

    text: str
    table: Optional[str]
    alias: Optional[str]
    # None for the first item, "," for a comma join, else the normalized JOIN keyword
    join: Optional[str]
    # Offsets of the ON predicate in the SELECT it was parsed from
    condition_span: Optional[Tuple[int, int]]
    derived: bool = False

    @property
    def name(self) -> str:
        return self.table or self.text.strip()


def mask_nested(sql: str, keep_parenthesized: bool = False) -> str:
    """
    Return a copy of sql where quoted text and parenthesized content are spaces.

    Parentheses themselves are kept, so "a AND (b OR c)" becomes
    "a AND (      )". With keep_parenthesized=True only quoted text is
    blanked. The result always has the same length as the input.
    """
    masked: List[str] = []
    depth = 0
    quote: Optional[str] = None
    i = 0
    length = len(sql)

    while i < length:
        char = sql[i]

        if quote is not None:
            masked.append(" ")
            if char == quote:
                # Doubled quote is an escaped quote inside the literal
                if i + 1 < length and sql[i + 1] == quote:
                    masked.append(" ")
                    i += 2
                    continue
                quote = None
            i += 1
            continue

        if char in ("'", '"'):
            quote = char
            masked.append(" ")
        elif keep_parenthesized:
            masked.append(char)
        elif char == "(":
            masked.append("(" if depth == 0 else " ")
            depth += 1
        elif char == ")":
            depth = max(0, depth - 1)
            masked.append(")" if depth == 0 else " ")
        else:
            masked.append(char if depth == 0 else " ")
        i += 1

    return "".join(masked)


def find_top_level(sql: str, keyword: str, start: int = 0) -> Optional[re.Match]:
    """Find the first top-level occurrence of a keyword (multi-word keywords allowed)."""
    words = r'\s+'.join(re.escape(word) for word in keyword.split())
    pattern = re.compile(rf'\b{words}\b', re.IGNORECASE)
    return pattern.search(mask_nested(sql), start)


def first_top_level_clause(sql: str, keywords: Tuple[str, ...], start: int = 0) -> Optional[int]:
    """Offset of the earliest top-level keyword among keywords, at or after start."""
    positions = [
        match.start()
        for keyword in keywords
        if (match := find_top_level(sql, keyword, start)) is not None
    ]
    return min(positions) if positions else None


def main_from_table(sql: str) -> Optional[Tuple[str, Optional[str], int]]:
    """
    Locate the top-level FROM clause.

    Returns:
        (table_name, alias, end_offset) or None when there is no top-level FROM.
        end_offset points right after the table name and alias.
    """
    match = _FROM_PATTERN.search(mask_nested(sql))
    if match is None:
        return None

    table = match.group(2).lower()
    alias = match.group(3)
    if alias and alias.upper() in NON_ALIAS_WORDS:
        return table, None, match.end(2)
    return table, (alias.lower() if alias else None), match.end()


def _blank_from_functions(sql: str) -> str:
    """Blank out EXTRACT(x FROM y)-style calls, whose FROM does not introduce a table."""
    chars = list(sql)
    for match in _FROM_FUNCTION_PATTERN.finditer(sql):
        depth = 0
        for index in range(match.end() - 1, len(sql)):
            if sql[index] == "(":
                depth += 1
            elif sql[index] == ")":
                depth -= 1
                if depth == 0:
                    chars[match.start():index + 1] = " " * (index + 1 - match.start())
                    break
    return "".join(chars)


def referenced_tables(sql: str) -> List[str]:
    """All table names after FROM, JOIN or a FROM-list comma, at any depth, lower-cased."""
    searchable = _blank_from_functions(mask_nested(sql, keep_parenthesized=True))
    tables: List[str] = []
    for match in _TABLE_REF_PATTERN.finditer(searchable):
        name = match.group(1).lower()
        if name not in tables:
            tables.append(name)
    for block in select_blocks(sql):
        for source in from_sources(block):
            if source.table and source.table not in tables:
                tables.append(source.table)
    return tables


def set_operations(sql: str) -> List[str]:
    """UNION, INTERSECT or EXCEPT keywords found outside string literals, at any depth."""
    found: List[str] = []
    for match in _SET_OPERATION_PATTERN.finditer(mask_nested(sql, keep_parenthesized=True)):
        keyword = match.group(1).upper()
        if keyword not in found:
            found.append(keyword)
    return found


def _closing_parenthesis(masked: str, open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(masked)):
        if masked[index] == "(":
            depth += 1
        elif masked[index] == ")":
            depth -= 1
            if depth == 0:
                return index
    return len(masked)


def nested_select_spans(sql: str) -> List[Tuple[int, int]]:
    """
    Offsets of the subqueries directly nested in sql.

    Each span covers the text between the parentheses of a "(SELECT ...)",
    so sql[start:end] is itself a SELECT. Subqueries of subqueries are not
    returned; call the function again on the inner text to reach them.
    """
    masked = mask_nested(sql, keep_parenthesized=True)
    spans: List[Tuple[int, int]] = []
    covered = 0
    for match in _SUBQUERY_START_PATTERN.finditer(masked):
        if match.start() < covered:
            continue
        close = _closing_parenthesis(masked, match.start())
        spans.append((match.start() + 1, close))
        covered = close
    return spans


def select_blocks(sql: str) -> List[str]:
    """The statement followed by every nested SELECT, outermost first."""
    blocks = [sql]
    for start, end in nested_select_spans(sql):
        blocks.extend(select_blocks(sql[start:end]))
    return blocks


def _rstrip_offset(text: str, start: int, end: int) -> int:
    while end > start and text[end - 1].isspace():
        end -= 1
    return end


def from_sources(sql: str) -> List[TableSource]:
    """
    Parse the top-level FROM clause of one SELECT into its sources.

    Comma-separated items and every JOIN flavour are returned in order. A
    parenthesized SELECT is reported as derived; its own SELECT is reachable
    through select_blocks(). Items that cannot be read as a table get
    table=None so callers can refuse them.
    """
    from_match = find_top_level(sql, "FROM")
    if from_match is None:
        return []

    masked = mask_nested(sql)
    start = from_match.end()
    end = first_top_level_clause(sql, ("WHERE",) + CLAUSES_AFTER_WHERE + SET_OPERATIONS, start)
    if end is None:
        end = len(sql)

    pieces: List[Tuple[Optional[str], int, int]] = []
    join: Optional[str] = None
    last = start
    for separator in _SOURCE_SEPARATOR_PATTERN.finditer(masked, start, end):
        pieces.append((join, last, separator.start()))
        join = "," if separator.group(0) == "," else " ".join(separator.group(0).upper().split())
        last = separator.end()
    pieces.append((join, last, end))

    sources: List[TableSource] = []
    for join, piece_start, piece_end in pieces:
        on = _ON_PATTERN.search(masked, piece_start, piece_end)
        source_end = _rstrip_offset(sql, piece_start, on.start() if on else piece_end)
        condition_span = None
        if on is not None:
            condition_span = (on.end(), _rstrip_offset(sql, on.end(), piece_end))

        text = sql[piece_start:source_end]
        match = _SOURCE_PATTERN.match(masked, piece_start, source_end)
        if match is None:
            sources.append(TableSource(text, None, None, join, condition_span))
            continue

        alias = match.group(3)
        if alias and alias.upper() in NON_ALIAS_WORDS:
            alias = None
        alias = alias.lower() if alias else None
        if match.group(1):
            # Only "(SELECT ...)" is a derived table; "(a JOIN b)" is left unparsed
            inner = sql[match.start(1) + 1:match.end(1) - 1]
            derived = re.match(r'\s*SELECT\b', inner, re.IGNORECASE) is not None
            sources.append(TableSource(text, None, alias, join, condition_span, derived=derived))
        else:
            sources.append(TableSource(text, match.group(2).lower(), alias, join, condition_span))
    return sources


def top_level_limit(sql: str) -> Optional[int]:
    """Value of the top-level LIMIT clause, if any."""
    match = _LIMIT_PATTERN.search(mask_nested(sql))
    return int(match.group(1)) if match else None


def where_clause_span(sql: str) -> Optional[Tuple[int, int, int]]:
    """
    Locate the top-level WHERE predicate.

    Returns:
        (keyword_start, predicate_start, predicate_end) or None.
    """
    where = find_top_level(sql, "WHERE")
    if where is None:
        return None
    end = first_top_level_clause(sql, CLAUSES_AFTER_WHERE, where.end())
    return where.start(), where.end(), end if end is not None else len(sql)


def strip_outer_parentheses(expression: str) -> str:
    """Remove parentheses that wrap the whole expression: "((a AND b))" -> "a AND b"."""
    expression = expression.strip()
    while expression.startswith("(") and expression.endswith(")"):
        inner = expression[1:-1]
        # The opening parenthesis must close at the very end
        if mask_nested(expression).rstrip() != "(" + " " * len(inner) + ")":
            break
        expression = inner.strip()
    return expression


def split_conjuncts(predicate: str) -> List[str]:
    """
    Split a predicate on top-level AND.

    Parenthesized conjuncts are flattened: "a AND (b AND c)" gives [a, b, c].
    A predicate with a top-level OR is returned whole, since splitting it on
    AND would change its meaning.
    """
    predicate = strip_outer_parentheses(predicate)
    if not predicate:
        return []

    masked = mask_nested(predicate)
    if re.search(r'\bOR\b', masked, re.IGNORECASE):
        return [predicate]

    parts: List[str] = []
    last = 0
    for match in re.finditer(r'\bAND\b', masked, re.IGNORECASE):
        parts.append(predicate[last:match.start()])
        last = match.end()
    parts.append(predicate[last:])

    conjuncts: List[str] = []
    for part in parts:
        part = part.strip()
        if not part:
            continue
        unwrapped = strip_outer_parentheses(part)
        if unwrapped != part:
            conjuncts.extend(split_conjuncts(unwrapped))
        else:
            conjuncts.append(part)
    return conjuncts


def split_top_level_commas(text: str) -> List[str]:
    """Split a select list or ORDER BY list on top-level commas, dropping empty items."""
    masked = mask_nested(text)
    parts: List[str] = []
    last = 0
    for index, char in enumerate(masked):
        if char == ",":
            parts.append(text[last:index].strip())
            last = index + 1
    parts.append(text[last:].strip())
    return [part for part in parts if part]
