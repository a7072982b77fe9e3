"""
Column Resolution
=================

Maps column references to the schema tables they belong to, walking nested
query scopes so correlated subqueries see their enclosing aliases.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Mapping, Optional

from sql_validation.schema import TableInfo
from sql_validation.sql_elements import ColumnRef, SqlElements


class Resolution(Enum):
    FOUND = "found"
    MISSING = "missing"
    UNVERIFIABLE = "unverifiable"


@dataclass(frozen=True)
class ScopeView:
    """One query scope together with everything visible from it."""

    elements: SqlElements
    aliases: Mapping[str, str]
    table_keys: tuple[str, ...]
    derived_aliases: frozenset[str]
    cte_names: frozenset[str]

    @property
    def opaque(self) -> bool:
        """True when some source of columns has no schema entry to check against."""
        return bool(self.derived_aliases) or any(k in self.cte_names for k in self.table_keys)


def iter_scopes(elements: SqlElements) -> Iterator[ScopeView]:
    ctes = frozenset(name for scope in elements.scopes() for name in scope.cte_names)
    yield from _walk(elements, {}, (), frozenset(), ctes)


def _walk(
    scope: SqlElements,
    outer_aliases: Mapping[str, str],
    outer_tables: tuple[str, ...],
    outer_derived: frozenset[str],
    ctes: frozenset[str],
) -> Iterator[ScopeView]:
    view = ScopeView(
        elements=scope,
        aliases={**outer_aliases, **scope.aliases},
        table_keys=tuple(t.key for t in scope.tables) + outer_tables,
        derived_aliases=outer_derived | frozenset(scope.derived_aliases),
        cte_names=ctes,
    )
    yield view
    for sub in scope.subqueries:
        yield from _walk(sub, view.aliases, view.table_keys, view.derived_aliases, ctes)


def resolve_column(
    view: ScopeView,
    ref: ColumnRef,
    snapshot: Mapping[str, TableInfo],
) -> tuple[Resolution, Optional[TableInfo]]:
    """
    Find the table a column reference belongs to.

    Returns:
        (FOUND, table) when the column exists, (MISSING, table-or-None) when
        it provably does not, (UNVERIFIABLE, None) when the source is a
        derived table, a CTE or a table unknown to the schema
    """
    if ref.qualifier is not None:
        if ref.qualifier in view.derived_aliases:
            return Resolution.UNVERIFIABLE, None
        key = view.aliases.get(ref.qualifier)
        if key is None:
            if ref.qualifier in view.cte_names:
                return Resolution.UNVERIFIABLE, None
            return Resolution.MISSING, None
        info = snapshot.get(key)
        if key in view.cte_names or info is None:
            return Resolution.UNVERIFIABLE, None
        if info.has_column(ref.name):
            return Resolution.FOUND, info
        return Resolution.MISSING, info

    candidates = [snapshot[k] for k in view.table_keys if k in snapshot]
    for info in candidates:
        if info.has_column(ref.name):
            return Resolution.FOUND, info
    unknown = any(k not in snapshot for k in view.table_keys)
    if not view.table_keys or view.opaque or unknown:
        return Resolution.UNVERIFIABLE, None
    return Resolution.MISSING, None
