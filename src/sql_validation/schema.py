"""
Business Schema
===============

Versioned, immutable description of the tables the pipeline validates
against, plus the schema metadata provider interface.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

NUMERIC_TYPES = {
    "int",
    "integer",
    "bigint",
    "smallint",
    "tinyint",
    "decimal",
    "numeric",
    "float",
    "real",
    "double",
    "money",
}


def normalize_identifier(name: str) -> str:
    """Lowercase an identifier and strip brackets, quotes and schema prefix."""
    name = name.strip().strip("[]\"`")
    if "." in name:
        name = name.rsplit(".", 1)[-1].strip("[]\"`")
    return name.lower()


@dataclass(frozen=True)
class Relationship:
    """Foreign-key style link ``table.column -> ref_table.ref_column``."""

    column: str
    ref_table: str
    ref_column: str


@dataclass(frozen=True)
class TableInfo:
    name: str
    columns: Mapping[str, str]
    relationships: tuple[Relationship, ...] = ()
    sensitive_columns: frozenset[str] = frozenset()
    allowed_roles: Optional[frozenset[str]] = None
    required_filters: tuple[str, ...] = ()
    large: bool = False
    business_purpose: str = ""

    @property
    def key(self) -> str:
        return normalize_identifier(self.name)

    def has_column(self, column: str) -> bool:
        return normalize_identifier(column) in self.columns

    def column_type(self, column: str) -> Optional[str]:
        return self.columns.get(normalize_identifier(column))

    def is_numeric(self, column: str) -> bool:
        col_type = self.column_type(column)
        if col_type is None:
            return False
        return col_type.split("(")[0].strip().lower() in NUMERIC_TYPES

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "TableInfo":
        columns = data.get("columns", {})
        if isinstance(columns, (list, tuple)):
            types = data.get("types", {})
            columns = {col: types.get(col, "TEXT") for col in columns}
        allowed = data.get("allowed_roles")
        return cls(
            name=name,
            columns=MappingProxyType(
                {normalize_identifier(c): str(t).upper() for c, t in columns.items()}
            ),
            relationships=tuple(
                Relationship(
                    column=normalize_identifier(r["column"]),
                    ref_table=normalize_identifier(r["ref_table"]),
                    ref_column=normalize_identifier(r["ref_column"]),
                )
                for r in data.get("relationships", [])
            ),
            sensitive_columns=frozenset(
                normalize_identifier(c) for c in data.get("sensitive_columns", [])
            ),
            allowed_roles=frozenset(allowed) if allowed is not None else None,
            required_filters=tuple(
                normalize_identifier(c) for c in data.get("required_filters", [])
            ),
            large=bool(data.get("large", False)),
            business_purpose=data.get("business_purpose", ""),
        )


@dataclass(frozen=True)
class AccessPolicy:
    """Role assignments used by the business-logic access checks."""

    user_roles: Mapping[str, frozenset[str]] = field(default_factory=dict)
    default_roles: frozenset[str] = frozenset({"analyst"})
    sensitive_data_roles: frozenset[str] = frozenset({"admin", "compliance"})

    def roles_for(self, user_id: Optional[str]) -> frozenset[str]:
        if user_id and user_id in self.user_roles:
            return self.user_roles[user_id]
        return self.default_roles

    def can_view_sensitive(self, user_id: Optional[str]) -> bool:
        return bool(self.roles_for(user_id) & self.sensitive_data_roles)


@dataclass(frozen=True)
class BusinessSchema:
    """
    Injected schema configuration.

    Holds table metadata, the business-term dictionary used for semantic
    alignment (term -> expected SQL targets) and the access policy. Instances
    are immutable and carry a ``version`` so results can be tied to the
    snapshot they were produced against.
    """

    version: str
    tables: Mapping[str, TableInfo]
    business_terms: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    access_policy: AccessPolicy = field(default_factory=AccessPolicy)

    def table(self, name: str) -> Optional[TableInfo]:
        return self.tables.get(normalize_identifier(name))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BusinessSchema":
        tables = {
            normalize_identifier(name): TableInfo.from_dict(name, info)
            for name, info in data.get("tables", {}).items()
        }
        policy_data = data.get("access_policy", {})
        policy = AccessPolicy(
            user_roles=MappingProxyType(
                {
                    user: frozenset(roles)
                    for user, roles in policy_data.get("user_roles", {}).items()
                }
            ),
            default_roles=frozenset(policy_data.get("default_roles", ["analyst"])),
            sensitive_data_roles=frozenset(
                policy_data.get("sensitive_data_roles", ["admin", "compliance"])
            ),
        )
        terms = {
            term.lower(): tuple(target.lower() for target in targets)
            for term, targets in data.get("business_terms", {}).items()
        }
        return cls(
            version=str(data.get("version", "1")),
            tables=MappingProxyType(tables),
            business_terms=MappingProxyType(terms),
            access_policy=policy,
        )

    @classmethod
    def from_json_file(cls, path: str | Path) -> "BusinessSchema":
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class SchemaProvider(ABC):
    """Read-only schema metadata catalog."""

    @abstractmethod
    async def resolve(self, table_names: Iterable[str]) -> dict[str, TableInfo]:
        """
        Resolve table metadata.

        Args:
            table_names: Table names referenced by the SQL

        Returns:
            Mapping of normalized table name to metadata; unknown tables are
            omitted

        Raises:
            ExternalServiceError: If the catalog is unreachable
        """
        pass


class StaticSchemaProvider(SchemaProvider):
    """Provider backed by an in-process ``BusinessSchema``."""

    def __init__(self, schema: BusinessSchema) -> None:
        self.schema = schema

    async def resolve(self, table_names: Iterable[str]) -> dict[str, TableInfo]:
        resolved = {}
        for name in table_names:
            info = self.schema.table(name)
            if info is not None:
                resolved[info.key] = info
        return resolved
