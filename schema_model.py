"""
Relational schema model and analysis result containers.

Everything in here is plain data. Schemas are assembled by `schema_builder` and
handed to the analyzers already frozen: tables, columns and constraints are
frozen dataclasses holding tuples, and relationships are derived once through
`Schema.resolve_relationships()` rather than maintained incrementally.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from normalization_config import CONFIG


# --------------------------------------------------------------------------------------
# Columns
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Column:
    name: str
    data_type: str
    nullable: bool = True
    default_value: Optional[str] = None

    def is_multi_valued(self) -> bool:
        """Declared type stores several values per row (SET, ENUM, JSON, ARRAY)."""
        type_upper = self.data_type.upper()
        return any(token in type_upper for token in CONFIG["HEURISTICS"]["MULTI_VALUED_TYPES"])

    def might_contain_structured_data(self) -> bool:
        """Declared type could hide structured content inside a single value.

        TEXT and BLOB columns whose names point at genuinely atomic content
        (an article body, a photo) are not reported.
        """
        heuristics = CONFIG["HEURISTICS"]
        type_upper = self.data_type.upper()
        name_lower = self.name.lower()

        if "TEXT" in type_upper and any(token in name_lower for token in heuristics["ATOMIC_TEXT_NAMES"]):
            return False
        if "BLOB" in type_upper and any(token in name_lower for token in heuristics["ATOMIC_BLOB_NAMES"]):
            return False

        if any(token in type_upper for token in heuristics["STRUCTURED_TYPES"]):
            return True
        return "VARCHAR" in type_upper and "MAX" in type_upper


# --------------------------------------------------------------------------------------
# Constraints (closed set of variants)
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class PrimaryKey:
    name: Optional[str]
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class Unique:
    name: Optional[str]
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class Check:
    name: Optional[str]
    columns: Tuple[str, ...] = ()
    expression: Optional[str] = None


@dataclass(frozen=True)
class ForeignKey:
    name: Optional[str]
    columns: Tuple[str, ...]
    referenced_table: str
    referenced_columns: Tuple[str, ...]


Constraint = Union[PrimaryKey, ForeignKey, Unique, Check]


def constraint_kind(constraint: Constraint) -> str:
    if isinstance(constraint, PrimaryKey):
        return "PRIMARY_KEY"
    if isinstance(constraint, ForeignKey):
        return "FOREIGN_KEY"
    if isinstance(constraint, Unique):
        return "UNIQUE"
    if isinstance(constraint, Check):
        return "CHECK"
    raise TypeError(f"Unknown constraint variant: {type(constraint).__name__}")


@dataclass(frozen=True)
class Relationship:
    """Foreign-key link between two tables of the same schema, by name."""

    source_table: str
    target_table: str
    source_columns: Tuple[str, ...]
    target_columns: Tuple[str, ...]


# --------------------------------------------------------------------------------------
# Tables and schemas
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Table:
    name: str
    columns: Tuple[Column, ...] = ()
    constraints: Tuple[Constraint, ...] = ()
    relationships: Tuple[Relationship, ...] = ()

    @property
    def primary_key(self) -> Optional[PrimaryKey]:
        for constraint in self.constraints:
            if isinstance(constraint, PrimaryKey):
                return constraint
        return None

    def has_primary_key(self) -> bool:
        return self.primary_key is not None

    @property
    def primary_key_columns(self) -> List[Column]:
        """Primary key columns in key order."""
        pk = self.primary_key
        if pk is None:
            return []
        found = (self.find_column(name) for name in pk.columns)
        return [col for col in found if col is not None]

    @property
    def primary_key_names(self) -> List[str]:
        return [col.name for col in self.primary_key_columns]

    @property
    def foreign_keys(self) -> List[ForeignKey]:
        return [c for c in self.constraints if isinstance(c, ForeignKey)]

    @property
    def unique_constraints(self) -> List[Unique]:
        return [c for c in self.constraints if isinstance(c, Unique)]

    @property
    def check_constraints(self) -> List[Check]:
        return [c for c in self.constraints if isinstance(c, Check)]

    @property
    def non_key_columns(self) -> List[Column]:
        pk_names = {name.lower() for name in self.primary_key_names}
        return [col for col in self.columns if col.name.lower() not in pk_names]

    def find_column(self, name: str) -> Optional[Column]:
        wanted = name.lower()
        for col in self.columns:
            if col.name.lower() == wanted:
                return col
        return None

    def is_foreign_key_column(self, name: str) -> bool:
        wanted = name.lower()
        return any(wanted == col.lower() for fk in self.foreign_keys for col in fk.columns)


@dataclass(frozen=True)
class Schema:
    name: str
    tables: Tuple[Table, ...] = ()

    def find_table(self, name: str) -> Optional[Table]:
        wanted = name.lower()
        for table in self.tables:
            if table.name.lower() == wanted:
                return table
        return None

    @property
    def relationships(self) -> List[Relationship]:
        return [rel for table in self.tables for rel in table.relationships]

    def resolve_relationships(self) -> "Schema":
        """Derive relationships from foreign keys and return the completed schema.

        Dangling references (the target table is not part of the schema) produce
        no relationship and no error. Any relationships already present are
        recomputed from scratch.
        """
        index: Dict[str, Table] = {}
        for table in self.tables:
            index.setdefault(table.name.lower(), table)

        resolved: List[Table] = []
        for table in self.tables:
            relationships = []
            for fk in table.foreign_keys:
                target = index.get(fk.referenced_table.lower())
                if target is None:
                    continue
                relationships.append(
                    Relationship(
                        source_table=table.name,
                        target_table=target.name,
                        source_columns=fk.columns,
                        target_columns=fk.referenced_columns,
                    )
                )
            resolved.append(dataclasses.replace(table, relationships=tuple(relationships)))
        return dataclasses.replace(self, tables=tuple(resolved))


# --------------------------------------------------------------------------------------
# Analysis results
# --------------------------------------------------------------------------------------
class NormalForm(Enum):
    FIRST_NORMAL_FORM = "1NF"
    SECOND_NORMAL_FORM = "2NF"
    THIRD_NORMAL_FORM = "3NF"

    @property
    def display(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


FORM_ORDER: Tuple[NormalForm, ...] = (
    NormalForm.FIRST_NORMAL_FORM,
    NormalForm.SECOND_NORMAL_FORM,
    NormalForm.THIRD_NORMAL_FORM,
)


@dataclass(frozen=True)
class NormalizationIssue:
    violated_form: NormalForm
    table_name: str
    column_name: Optional[str]
    description: str
    suggestion: Optional[str] = None
    fix_sql: Optional[str] = None

    @property
    def column_names(self) -> List[str]:
        """Columns named by the issue; `column_name` holds them comma separated."""
        if not self.column_name:
            return []
        return [part.strip() for part in self.column_name.split(",") if part.strip()]

    @property
    def has_fix(self) -> bool:
        return bool(self.fix_sql)


def empty_issue_buckets() -> Dict[NormalForm, List[NormalizationIssue]]:
    return {form: [] for form in FORM_ORDER}


@dataclass
class AnalysisResult:
    schema: Schema
    achieved_form: Optional[NormalForm]
    issues_by_form: Dict[NormalForm, List[NormalizationIssue]] = field(default_factory=empty_issue_buckets)
    warnings: List[str] = field(default_factory=list)

    def all_issues(self) -> List[NormalizationIssue]:
        return [issue for form in FORM_ORDER for issue in self.issues_by_form.get(form, [])]

    def has_issues(self) -> bool:
        return any(self.issues_by_form.get(form) for form in FORM_ORDER)

    def issue_count(self) -> int:
        return len(self.all_issues())

    def issues_for_table(self, table_name: str) -> List[NormalizationIssue]:
        wanted = table_name.lower()
        return [issue for issue in self.all_issues() if issue.table_name.lower() == wanted]


def join_names(names: Iterable[str]) -> str:
    return ", ".join(names)
