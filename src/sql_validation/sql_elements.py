"""
SQL Element Extraction
======================

Regex-based extraction of the parts of a query the validators reason about:
tables, aliases, columns per clause, joins, aggregates and clause presence.
Subqueries are extracted recursively and masked out of the enclosing query so
each scope is analysed on its own.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional

from sql_validation.schema import normalize_identifier

SQL_KEYWORDS = {
    "select", "from", "where", "and", "or", "not", "in", "is", "null", "like",
    "ilike", "between", "exists", "as", "on", "using", "join", "inner", "left",
    "right", "full", "outer", "cross", "natural", "group", "by", "order",
    "having", "limit", "offset", "fetch", "first", "next", "rows", "row",
    "only", "top", "percent", "distinct", "all", "any", "some", "union",
    "intersect", "except", "asc", "desc", "nulls", "last", "case", "when",
    "then", "else", "end", "with", "over", "partition", "true", "false",
    "interval", "escape", "collate", "ties", "current_date", "current_time",
    "current_timestamp", "localtime", "localtimestamp",
    # type names (CAST/CONVERT targets)
    "int", "integer", "bigint", "smallint", "tinyint", "decimal", "numeric",
    "float", "real", "double", "precision", "money", "bit", "boolean", "char",
    "varchar", "nvarchar", "nchar", "text", "ntext", "date", "datetime",
    "datetime2", "time", "timestamp", "signed", "unsigned",
    # date parts
    "year", "quarter", "month", "week", "day", "hour", "minute", "second",
    "millisecond", "dayofweek", "weekday", "yy", "yyyy", "qq", "mm", "dd",
    "wk", "hh", "mi", "ss",
}

AGGREGATE_FUNCTIONS = {
    "count", "sum", "avg", "min", "max", "stdev", "stddev", "variance",
    "string_agg", "group_concat", "array_agg",
}

_STRING_LITERAL = re.compile(r"(?<!\w)N?'(?:[^']|'')*'")
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_QUOTED_IDENTIFIER = re.compile(r'\[([^\]]+)\]|"([^"]+)"|`([^`]+)`')
_CLAUSE = re.compile(
    r"\b(SELECT|FROM|WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT|OFFSET|FETCH|"
    r"UNION|INTERSECT|EXCEPT)\b",
    re.IGNORECASE,
)
_JOIN = re.compile(
    r"\b((?:NATURAL\s+)?(?:(?:INNER|CROSS|(?:LEFT|RIGHT|FULL)(?:\s+OUTER)?)\s+)?JOIN)\b",
    re.IGNORECASE,
)
_SUBQUERY_START = re.compile(r"\(\s*(?:SELECT|WITH)\b", re.IGNORECASE)
_CTE_NAME = re.compile(r"(?:\bWITH|,)\s*([A-Za-z_]\w*)\s+AS\s*\(", re.IGNORECASE)
_IDENTIFIER = re.compile(
    r"(?<![\w.@#$'])([A-Za-z_]\w*)(?:\.([A-Za-z_]\w*|\*))?(?![\w.])(?!\s*\()"
)
_AGGREGATE_CALL = re.compile(
    r"\b(" + "|".join(sorted(AGGREGATE_FUNCTIONS)) + r")\s*\(", re.IGNORECASE
)
_TABLE_REF = re.compile(
    r"^\s*([A-Za-z_][\w.]*|\(0\))(?:\s+(?:AS\s+)?([A-Za-z_]\w*))?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_JOIN_TARGET = re.compile(
    r"^\s*([A-Za-z_][\w.]*|\(0\))(?:\s+(?:AS\s+)?([A-Za-z_]\w*))?"
    r"\s*(?:\b(ON|USING)\b(.*))?$",
    re.IGNORECASE | re.DOTALL,
)
_SELECT_PREFIX = re.compile(
    r"^\s*(?:(DISTINCT|ALL)\s+)?(?:(TOP)\s*\(?\s*\d+\s*\)?\s*(?:PERCENT\s+)?"
    r"(?:WITH\s+TIES\s+)?)?",
    re.IGNORECASE,
)
_ITEM_ALIAS = re.compile(
    r"^(.*[\w)\]'])\s+(?:AS\s+)?([A-Za-z_]\w*)$", re.IGNORECASE | re.DOTALL
)
_TABLE_HINT = re.compile(r"\bWITH\s*\([^)]*\)", re.IGNORECASE)


@dataclass(frozen=True)
class TableRef:
    name: str
    key: str
    alias: Optional[str] = None


@dataclass(frozen=True)
class JoinClause:
    join_type: str
    table: Optional[str]
    alias: Optional[str]
    condition: Optional[str]
    using: bool = False

    @property
    def label(self) -> str:
        target = self.table or "(subquery)"
        return f"{self.join_type} {target}"


@dataclass(frozen=True)
class ColumnRef:
    name: str
    qualifier: Optional[str]
    clause: str

    @property
    def label(self) -> str:
        return f"{self.qualifier}.{self.name}" if self.qualifier else self.name


@dataclass(frozen=True)
class AggregateCall:
    function: str
    argument: str
    clause: str
    windowed: bool = False


@dataclass(frozen=True)
class SelectItem:
    expression: str
    alias: Optional[str]
    is_aggregate: bool
    is_star: bool
    columns: tuple[ColumnRef, ...] = ()


@dataclass
class SqlElements:
    """Extracted structure of one query scope."""

    sql: str
    statement_type: str = ""
    tables: list[TableRef] = field(default_factory=list)
    aliases: dict[str, str] = field(default_factory=dict)
    derived_aliases: set[str] = field(default_factory=set)
    cte_names: set[str] = field(default_factory=set)
    joins: list[JoinClause] = field(default_factory=list)
    columns: list[ColumnRef] = field(default_factory=list)
    select_items: list[SelectItem] = field(default_factory=list)
    select_aliases: set[str] = field(default_factory=set)
    aggregates: list[AggregateCall] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    where_clause: Optional[str] = None
    having_clause: Optional[str] = None
    order_by: Optional[str] = None
    has_limit: bool = False
    has_top: bool = False
    has_set_operation: bool = False
    star_qualifiers: set[str] = field(default_factory=set)
    subqueries: list["SqlElements"] = field(default_factory=list)

    @property
    def has_where(self) -> bool:
        return self.where_clause is not None

    @property
    def has_group_by(self) -> bool:
        return bool(self.group_by)

    @property
    def has_order_by(self) -> bool:
        return self.order_by is not None

    @property
    def selects_star(self) -> bool:
        return any(item.is_star for item in self.select_items)

    @property
    def ungrouped_aggregates(self) -> list[AggregateCall]:
        return [a for a in self.aggregates if not a.windowed]

    def resolve_qualifier(self, qualifier: str) -> Optional[str]:
        """Map an alias or table name to the referenced table key."""
        return self.aliases.get(qualifier.lower())

    def scopes(self) -> Iterator["SqlElements"]:
        """Yield this scope followed by every nested subquery scope."""
        yield self
        for sub in self.subqueries:
            yield from sub.scopes()

    def all_tables(self) -> list[TableRef]:
        """Physical tables referenced anywhere in the statement."""
        ctes = {name for scope in self.scopes() for name in scope.cte_names}
        seen: dict[str, TableRef] = {}
        for scope in self.scopes():
            for table in scope.tables:
                if table.key not in ctes and table.key not in seen:
                    seen[table.key] = table
        return list(seen.values())


def strip_comments(sql: str) -> str:
    return _LINE_COMMENT.sub(" ", _BLOCK_COMMENT.sub(" ", sql))


def mask_sql(sql: str) -> str:
    """Blank out comments and string literals, unquote identifiers."""
    text = _STRING_LITERAL.sub("''", strip_comments(sql))
    return _QUOTED_IDENTIFIER.sub(
        lambda m: next(g for g in m.groups() if g is not None).replace(" ", "_"), text
    )


def _depths(text: str) -> list[int]:
    depths = []
    depth = 0
    for ch in text:
        if ch == ")":
            depth = max(0, depth - 1)
        depths.append(depth)
        if ch == "(":
            depth += 1
    return depths


def _matching_paren(text: str, start: int) -> int:
    depth = 0
    for i in range(start, len(text)):
        if text[i] == "(":
            depth += 1
        elif text[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    return len(text) - 1


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` outside of parentheses."""
    parts = []
    depth = 0
    current = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        if ch == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _extract_subqueries(text: str) -> tuple[str, list[str]]:
    """Pull ``(SELECT ...)`` bodies out of ``text``, replacing them with ``(0)``."""
    bodies = []
    pieces = []
    pos = 0
    while True:
        match = _SUBQUERY_START.search(text, pos)
        if match is None:
            break
        end = _matching_paren(text, match.start())
        bodies.append(text[match.start() + 1 : end])
        pieces.append(text[pos : match.start()])
        pieces.append("(0)")
        pos = end + 1
    pieces.append(text[pos:])
    return "".join(pieces), bodies


def _split_clauses(text: str) -> tuple[dict[str, str], bool]:
    depths = _depths(text)
    marks = [
        (m.start(), m.end(), re.sub(r"\s+", " ", m.group(1).upper()))
        for m in _CLAUSE.finditer(text)
        if depths[m.start()] == 0
    ]
    clauses: dict[str, str] = {}
    has_set_operation = False
    for i, (start, end, keyword) in enumerate(marks):
        if keyword in ("UNION", "INTERSECT", "EXCEPT"):
            has_set_operation = True
            break
        stop = marks[i + 1][0] if i + 1 < len(marks) else len(text)
        clauses.setdefault(keyword, text[end:stop].strip())
    return clauses, has_set_operation


def _aggregates_in(text: str, clause: str) -> list[AggregateCall]:
    calls = []
    for match in _AGGREGATE_CALL.finditer(text):
        open_paren = match.end() - 1
        close = _matching_paren(text, open_paren)
        argument = text[open_paren + 1 : close].strip()
        windowed = re.match(r"\s*OVER\b", text[close + 1 :], re.IGNORECASE) is not None
        calls.append(
            AggregateCall(
                function=match.group(1).upper(),
                argument=re.sub(r"^DISTINCT\s+", "", argument, flags=re.IGNORECASE),
                clause=clause,
                windowed=windowed,
            )
        )
    return calls


class _ScopeParser:
    def __init__(self, sql: str, masked: str) -> None:
        self.elements = SqlElements(sql=sql)
        self.masked = masked

    def parse(self) -> SqlElements:
        el = self.elements
        text = self.masked.strip().rstrip(";").strip()
        first_word = re.match(r"\s*([A-Za-z]+)", text)
        el.statement_type = first_word.group(1).upper() if first_word else ""

        if el.statement_type == "WITH":
            main_select = self._main_select_position(text)
            el.cte_names = {
                name.lower() for name in _CTE_NAME.findall(text[:main_select])
            }

        # Nested SELECTs become their own scopes
        outer, bodies = _extract_subqueries(text)
        el.subqueries = [_parse_scope(body, body) for body in bodies]
        for sub in el.subqueries:
            el.cte_names |= sub.cte_names

        clauses, el.has_set_operation = _split_clauses(outer)
        self._parse_from(clauses.get("FROM", ""))
        self._parse_select(clauses.get("SELECT", ""))

        el.where_clause = clauses.get("WHERE")
        el.having_clause = clauses.get("HAVING")
        el.order_by = clauses.get("ORDER BY")
        el.has_limit = el.has_top or any(k in clauses for k in ("LIMIT", "FETCH"))
        if "GROUP BY" in clauses:
            el.group_by = [
                re.sub(r"\s+", " ", item).lower()
                for item in split_top_level(clauses["GROUP BY"])
            ]

        # Columns and aggregates outside the select list
        for clause_name in ("WHERE", "GROUP BY", "HAVING", "ORDER BY"):
            if clause_name in clauses:
                clause_text = clauses[clause_name]
                el.columns.extend(self._columns_in(clause_text, clause_name))
                if clause_name != "GROUP BY":
                    el.aggregates.extend(_aggregates_in(clause_text, clause_name))
        for join in el.joins:
            if join.condition and not join.using:
                el.columns.extend(self._columns_in(join.condition, "ON"))
        return el

    @staticmethod
    def _main_select_position(text: str) -> int:
        depths = _depths(text)
        for match in re.finditer(r"\bSELECT\b", text, re.IGNORECASE):
            if depths[match.start()] == 0:
                return match.start()
        return len(text)

    def _add_table(self, name: str, alias: Optional[str]) -> Optional[str]:
        el = self.elements
        if alias and alias.lower() in SQL_KEYWORDS:
            alias = None
        if name == "(0)":
            if alias:
                el.derived_aliases.add(alias.lower())
            return None
        key = normalize_identifier(name)
        el.tables.append(TableRef(name=name, key=key, alias=alias))
        el.aliases[key] = key
        if alias:
            el.aliases[alias.lower()] = key
        return key

    def _parse_from(self, from_text: str) -> None:
        if not from_text:
            return
        parts = _JOIN.split(_TABLE_HINT.sub(" ", from_text))
        base_refs = split_top_level(parts[0])
        for index, ref in enumerate(base_refs):
            match = _TABLE_REF.match(ref)
            if not match:
                continue
            key = self._add_table(match.group(1), match.group(2))
            if index > 0:
                self.elements.joins.append(
                    JoinClause(
                        join_type="IMPLICIT",
                        table=key,
                        alias=match.group(2),
                        condition=None,
                    )
                )

        for join_type, segment in zip(parts[1::2], parts[2::2]):
            match = _JOIN_TARGET.match(segment)
            if not match:
                continue
            name, alias, keyword, condition = match.groups()
            key = self._add_table(name, alias)
            self.elements.joins.append(
                JoinClause(
                    join_type=re.sub(r"\s+", " ", join_type.upper()),
                    table=key,
                    alias=alias if alias and alias.lower() not in SQL_KEYWORDS else None,
                    condition=condition.strip() if condition else None,
                    using=bool(keyword) and keyword.upper() == "USING",
                )
            )

    def _parse_select(self, select_text: str) -> None:
        el = self.elements
        if not select_text:
            return
        prefix = _SELECT_PREFIX.match(select_text)
        if prefix and prefix.group(2):
            el.has_top = True
        body = select_text[prefix.end() :] if prefix else select_text

        items = []
        for raw in split_top_level(body):
            alias_match = _ITEM_ALIAS.match(raw)
            if alias_match and alias_match.group(2).lower() not in SQL_KEYWORDS:
                items.append((alias_match.group(1), alias_match.group(2)))
                el.select_aliases.add(alias_match.group(2).lower())
            else:
                items.append((raw, None))

        for expression, alias in items:
            is_star = expression.strip() == "*" or expression.strip().endswith(".*")
            if is_star and "." in expression:
                el.star_qualifiers.add(expression.strip()[:-2].lower())
            aggregates = _aggregates_in(expression, "SELECT")
            el.aggregates.extend(aggregates)
            columns = tuple(self._columns_in(expression, "SELECT"))
            el.columns.extend(columns)
            el.select_items.append(
                SelectItem(
                    expression=expression.strip(),
                    alias=alias,
                    is_aggregate=any(not a.windowed for a in aggregates),
                    is_star=is_star,
                    columns=columns,
                )
            )

    def _columns_in(self, text: str, clause: str) -> list[ColumnRef]:
        el = self.elements
        refs = []
        for match in _IDENTIFIER.finditer(text):
            first, second = match.group(1), match.group(2)
            # qualifier.column
            if second is not None:
                if second == "*":
                    continue
                refs.append(ColumnRef(name=second.lower(), qualifier=first.lower(), clause=clause))
                continue
            name = first.lower()
            if (
                name in SQL_KEYWORDS
                or name in el.select_aliases
                or name in el.aliases
                or name in el.derived_aliases
            ):
                continue
            refs.append(ColumnRef(name=name, qualifier=None, clause=clause))
        return refs


def _parse_scope(sql: str, masked: str) -> SqlElements:
    return _ScopeParser(sql, masked).parse()


def extract_sql_elements(sql: str) -> SqlElements:
    """
    Extract the structural elements of a SQL statement.

    Args:
        sql: Raw SQL text

    Returns:
        SqlElements for the outermost scope, with nested scopes in
        ``subqueries``
    """
    return _parse_scope(sql, mask_sql(sql))


def normalize_sql(sql: str) -> str:
    """Whitespace- and case-insensitive form used to compare candidates."""
    return re.sub(r"\s+", " ", sql.strip().rstrip(";")).lower()
