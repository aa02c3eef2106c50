"""
Normal-form analyzers (1NF, 2NF, 3NF).

None of these look at data. Every check is a naming-convention or declared-
constraint heuristic, so the issues they produce are candidates for review,
not proofs. Each analyzer exposes:

- `find_violations(schema)`: the checks of its own form only.
- `analyze(schema)`: gated delegation. 2NF first runs 1NF and returns the 1NF
  issues unchanged if any of them is critical; 3NF first runs 2NF and returns
  its issues unchanged if there are any.
- `is_compliant(schema)`: `analyze` found nothing.

`is_critical_issue` is the single predicate deciding whether a 1NF issue
blocks the next form. The orchestrator uses the same predicate.

Suggested fixes only ever contain CREATE TABLE (and, for a missing key, ALTER
TABLE ... ADD COLUMN) as executable SQL. Data migration and column drops are
emitted as comments for a human to review.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence

from normalization_config import CONFIG
from schema_model import Column, ForeignKey, NormalForm, NormalizationIssue, Schema, Table, join_names


STRUCTURED_DATA_MARKER = "might contain structured data"
REPEATING_GROUP_MARKER = "repeating group"
TRAILING_DIGITS_RE = re.compile(r"\d+$")


def is_critical_issue(issue: NormalizationIssue) -> bool:
    """Whether a 1NF issue blocks progression to 2NF.

    Structured-data warnings are advisory. Repeating groups of at most two
    id-like columns are treated as composite keys with numbered id columns.
    """
    description = issue.description or ""
    if STRUCTURED_DATA_MARKER in description:
        return False
    if (
        REPEATING_GROUP_MARKER in description
        and issue.column_name is not None
        and "id" in issue.column_name
        and len(issue.column_name.split(",")) <= 2
    ):
        return False
    return True


def critical_issues(issues: Iterable[NormalizationIssue]) -> List[NormalizationIssue]:
    return [issue for issue in issues if is_critical_issue(issue)]


# --------------------------------------------------------------------------------------
# Naming helpers
# --------------------------------------------------------------------------------------
def strip_id_suffix(name: str) -> str:
    return name[:-3] if name.lower().endswith("_id") else name


def ends_with_any(name: str, suffixes: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(lowered.endswith(suffix) for suffix in suffixes)


def column_sql(column: Column, suffix: str = "") -> str:
    text = f"{column.name} {column.data_type}"
    if not column.nullable:
        text += " NOT NULL"
    return text + suffix


def parent_key(table: Table) -> str:
    """Column a child table should reference: the single-column key, else `id`."""
    pk = table.primary_key_names
    return pk[0] if len(pk) == 1 else "id"


def _drop_columns_sql(table: Table, columns: Sequence[str], heading: str) -> List[str]:
    lines = [f"-- {heading}"]
    lines.extend(f"-- ALTER TABLE {table.name} DROP COLUMN {name};" for name in columns)
    return lines


# --------------------------------------------------------------------------------------
# Base analyzer
# --------------------------------------------------------------------------------------
class NormalFormAnalyzer:
    """Shared contract of the three analyzers."""

    form: NormalForm

    def find_violations(self, schema: Schema) -> List[NormalizationIssue]:
        raise NotImplementedError

    def analyze(self, schema: Schema) -> List[NormalizationIssue]:
        raise NotImplementedError

    def is_compliant(self, schema: Schema) -> bool:
        return not self.analyze(schema)

    def _issue(
        self,
        table: Table,
        column_name: Optional[str],
        description: str,
        suggestion: Optional[str],
        fix_sql: Optional[str],
    ) -> NormalizationIssue:
        return NormalizationIssue(
            violated_form=self.form,
            table_name=table.name,
            column_name=column_name,
            description=description,
            suggestion=suggestion,
            fix_sql=fix_sql,
        )


# --------------------------------------------------------------------------------------
# First normal form
# --------------------------------------------------------------------------------------
class FirstNormalFormAnalyzer(NormalFormAnalyzer):
    """A table is in 1NF when it has a primary key, atomic columns and no repeating groups."""

    form = NormalForm.FIRST_NORMAL_FORM

    def analyze(self, schema: Schema) -> List[NormalizationIssue]:
        return self.find_violations(schema)

    def find_violations(self, schema: Schema) -> List[NormalizationIssue]:
        issues: List[NormalizationIssue] = []
        for table in schema.tables:
            issues.extend(self._check_primary_key(table))
            issues.extend(self._check_atomic_columns(table))
            issues.extend(self._check_repeating_groups(table))
        return issues

    def _check_primary_key(self, table: Table) -> List[NormalizationIssue]:
        if table.has_primary_key():
            return []
        return [
            self._issue(
                table,
                None,
                "Table does not have a primary key",
                "Add a primary key to the table",
                f"ALTER TABLE {table.name} ADD COLUMN id INT AUTO_INCREMENT PRIMARY KEY;",
            )
        ]

    def _check_atomic_columns(self, table: Table) -> List[NormalizationIssue]:
        issues = []
        for column in table.columns:
            if column.is_multi_valued():
                issues.append(
                    self._issue(
                        table,
                        column.name,
                        "Column potentially contains multi-valued attributes",
                        "Create a separate table to store these values and establish a foreign key relationship",
                        self._multi_valued_fix_sql(table, column),
                    )
                )
            elif column.might_contain_structured_data():
                issues.append(
                    self._issue(
                        table,
                        column.name,
                        "Column might contain structured data (non-atomic values)",
                        "Consider splitting this data into separate columns or tables if it contains multiple values",
                        None,
                    )
                )
        return issues

    def _check_repeating_groups(self, table: Table) -> List[NormalizationIssue]:
        issues = []
        pk_names = {name.lower() for name in table.primary_key_names}
        column_names = [col.name for col in table.columns]

        for base in self._base_names(column_names, pk_names):
            pattern = re.compile(re.escape(base) + r"\d+", re.IGNORECASE)
            numbered = [name for name in column_names if pattern.fullmatch(name)]
            if len(numbered) < 2:
                continue
            if all(name.lower() in pk_names for name in numbered):
                continue
            issues.append(
                self._issue(
                    table,
                    join_names(numbered),
                    f"Potential repeating group detected: {base} columns",
                    "Create a separate table to store these values",
                    self._repeating_group_fix_sql(table, base, numbered),
                )
            )
        return issues

    @staticmethod
    def _base_names(column_names: Sequence[str], pk_names: Iterable[str]) -> List[str]:
        pk = set(pk_names)
        bases: List[str] = []
        for name in column_names:
            if len(name) <= 2 or name.lower() in pk:
                continue
            base = TRAILING_DIGITS_RE.sub("", name)
            if base != name and len(base) >= 3 and base.lower() not in (b.lower() for b in bases):
                bases.append(base)
        return bases

    @staticmethod
    def _multi_valued_fix_sql(table: Table, column: Column) -> str:
        new_table = f"{table.name}_{column.name}"
        link = f"{table.name}_id"
        key = parent_key(table)
        type_upper = column.data_type.upper()
        if "VARCHAR" in type_upper:
            value_type = "VARCHAR(255)"
        elif "INT" in type_upper:
            value_type = "INT"
        else:
            value_type = "TEXT"
        if not column.nullable:
            value_type += " NOT NULL"

        lines = [
            "-- Create a new table for the multi-valued attribute",
            f"CREATE TABLE {new_table} (",
            "    id INT AUTO_INCREMENT PRIMARY KEY,",
            f"    {link} INT NOT NULL,",
            f"    {column.name}_value {value_type},",
            f"    FOREIGN KEY ({link}) REFERENCES {table.name}({key})",
            ");",
            "",
            "-- Data migration would be required:",
            f"-- INSERT INTO {new_table} ({link}, {column.name}_value)",
            f"-- SELECT {key}, value FROM json_table_function({column.name}) ...",
            "",
        ]
        lines.extend(_drop_columns_sql(table, [column.name], "After migration, drop the original column"))
        return "\n".join(lines)

    @staticmethod
    def _repeating_group_fix_sql(table: Table, base: str, numbered: Sequence[str]) -> str:
        stem = base.rstrip("_") or base
        new_table = f"{table.name}_{stem}"
        link = f"{table.name}_id"
        key = parent_key(table)
        first = table.find_column(numbered[0])
        value_type = first.data_type if first is not None else "VARCHAR(255)"

        lines = [
            "-- Create a new table for the repeating group",
            f"CREATE TABLE {new_table} (",
            "    id INT AUTO_INCREMENT PRIMARY KEY,",
            f"    {link} INT NOT NULL,",
            f"    {stem}_value {value_type},",
            f"    FOREIGN KEY ({link}) REFERENCES {table.name}({key})",
            ");",
            "",
            "-- Data migration instructions:",
        ]
        for name in numbered:
            lines.append(f"-- INSERT INTO {new_table} ({link}, {stem}_value)")
            lines.append(f"-- SELECT {key}, {name} FROM {table.name} WHERE {name} IS NOT NULL;")
        lines.append("")
        lines.extend(_drop_columns_sql(table, numbered, "After migration, drop the original columns"))
        return "\n".join(lines)


# --------------------------------------------------------------------------------------
# Second normal form
# --------------------------------------------------------------------------------------
class SecondNormalFormAnalyzer(NormalFormAnalyzer):
    """A table is in 2NF when it is in 1NF and no non-key column depends on part of the key."""

    form = NormalForm.SECOND_NORMAL_FORM

    def __init__(self, first_nf: Optional[FirstNormalFormAnalyzer] = None) -> None:
        self.first_nf = first_nf or FirstNormalFormAnalyzer()

    def analyze(self, schema: Schema) -> List[NormalizationIssue]:
        first_issues = self.first_nf.analyze(schema)
        if critical_issues(first_issues):
            # 2NF presupposes 1NF
            return first_issues
        return self.find_violations(schema)

    def find_violations(self, schema: Schema) -> List[NormalizationIssue]:
        issues: List[NormalizationIssue] = []
        for table in schema.tables:
            if len(table.primary_key_columns) > 1:
                issues.extend(self._composite_key_dependencies(table))
            else:
                issues.extend(self._foreign_key_dependencies(table))
        return issues

    # Composite keys ------------------------------------------------------------------
    def _composite_key_dependencies(self, table: Table) -> List[NormalizationIssue]:
        issues: List[NormalizationIssue] = []
        pk_names = {name.lower() for name in table.primary_key_names}

        for fk in table.foreign_keys:
            if any(col.lower() in pk_names for col in fk.columns):
                dependents = self._fk_related_columns(table, fk, pk_names, strict_table_match=False)
                if dependents:
                    issues.append(
                        self._issue(
                            table,
                            join_names(dependents),
                            "Potential partial dependency detected: These columns may depend on "
                            f"{join_names(fk.columns)} (part of the primary key) rather than the full primary key",
                            f"Consider creating a separate table for these columns with {join_names(fk.columns)} as the primary key",
                            foreign_key_fix_sql(table, fk, dependents),
                        )
                    )

        for pk_col in table.primary_key_columns:
            if not pk_col.name.lower().endswith("_id"):
                continue
            base = strip_id_suffix(pk_col.name).lower()
            if len(base) < 2:
                continue
            dependents = [
                col.name
                for col in table.columns
                if col.name.lower() not in pk_names and f"{base}_" in col.name.lower()
            ]
            if dependents:
                issues.append(
                    self._issue(
                        table,
                        join_names(dependents),
                        "Potential partial dependency detected: These columns may depend on "
                        f"{pk_col.name} (part of the primary key) rather than the full primary key",
                        f"Consider creating a separate table for these columns with {pk_col.name} as the primary key",
                        partial_dependency_fix_sql(table, pk_col, dependents),
                    )
                )

        for col in table.columns:
            if col.name.lower() in pk_names:
                continue
            name = col.name.lower()
            for pk_col in table.primary_key_columns:
                base = strip_id_suffix(pk_col.name).lower()
                if len(base) >= 3 and (name.startswith(f"{base}_") or f"_{base}_" in name):
                    issues.append(
                        self._issue(
                            table,
                            col.name,
                            "Potential partial dependency detected: This column may depend on "
                            f"{pk_col.name} (part of the primary key) rather than the full primary key",
                            f"Consider creating a separate table for this column with {pk_col.name} as the primary key",
                            partial_dependency_fix_sql(table, pk_col, [col.name]),
                        )
                    )
                    # first matching key column only
                    break
        return issues

    # Single-column keys --------------------------------------------------------------
    def _foreign_key_dependencies(self, table: Table) -> List[NormalizationIssue]:
        issues: List[NormalizationIssue] = []
        pk_names = {name.lower() for name in table.primary_key_names}
        for fk in table.foreign_keys:
            dependents = self._fk_related_columns(table, fk, pk_names, strict_table_match=True)
            if dependents:
                issues.append(
                    self._issue(
                        table,
                        join_names(dependents),
                        "Potential partial dependency detected: These columns may depend on "
                        f"{join_names(fk.columns)} rather than the primary key",
                        f"Consider creating a separate table for these columns with {join_names(fk.columns)} as the primary key",
                        foreign_key_fix_sql(table, fk, dependents),
                    )
                )
        return issues

    @staticmethod
    def _fk_related_columns(table: Table, fk: ForeignKey, pk_names: Iterable[str], strict_table_match: bool) -> List[str]:
        """Non-key, non-FK columns whose names point at the referenced table.

        With `strict_table_match` the full table name only counts when followed
        by an underscore (`customer_` rather than `customer`).
        """
        pk = set(pk_names)
        fk_cols = {col.lower() for col in fk.columns}
        ref_table = fk.referenced_table.lower()
        table_token = f"{ref_table}_" if strict_table_match else ref_table
        prefix = ref_table[:3]
        fk_base = f"{strip_id_suffix(fk.columns[0]).lower()}_" if len(fk.columns) == 1 else None

        dependents = []
        for col in table.columns:
            name = col.name.lower()
            if name in pk or name in fk_cols:
                continue
            if table_token in name or name.startswith(prefix) or (fk_base is not None and name.startswith(fk_base)):
                dependents.append(col.name)
        return dependents


def foreign_key_fix_sql(table: Table, fk: ForeignKey, dependents: Sequence[str]) -> str:
    new_table = f"{table.name}_{fk.referenced_table}"
    keys = join_names(fk.columns)
    lines = ["-- Create a new table to remove partial dependency", f"CREATE TABLE {new_table} ("]
    for name in list(fk.columns) + list(dependents):
        col = table.find_column(name)
        lines.append(f"    {column_sql(col, ',')}" if col is not None else f"    {name},")
    lines.append(f"    PRIMARY KEY ({keys}),")
    lines.append(f"    FOREIGN KEY ({keys}) REFERENCES {fk.referenced_table}({join_names(fk.referenced_columns)})")
    lines.append(");")
    lines.append("")
    lines.extend(_migration_sql(table, new_table, list(fk.columns), dependents))
    lines.append("")
    lines.extend(_drop_columns_sql(table, dependents, "After migration, drop the columns from the original table"))
    return "\n".join(lines)


def partial_dependency_fix_sql(table: Table, key: Column, dependents: Sequence[str]) -> str:
    new_table = f"{table.name}_{strip_id_suffix(key.name)}"
    lines = ["-- Create a new table to remove partial dependency", f"CREATE TABLE {new_table} ("]
    lines.extend(_keyed_table_body(table, key, dependents))
    lines.append(");")
    lines.append("")
    lines.extend(_migration_sql(table, new_table, [key.name], dependents))
    lines.append("")
    lines.append("-- Reference the new table from the original table")
    lines.append(f"-- ALTER TABLE {table.name} ADD FOREIGN KEY ({key.name}) REFERENCES {new_table}({key.name});")
    lines.append("")
    lines.extend(_drop_columns_sql(table, dependents, "After migration, drop the columns from the original table"))
    return "\n".join(lines)


def _keyed_table_body(table: Table, key: Column, dependents: Sequence[str]) -> List[str]:
    body = [f"    {column_sql(key, ' PRIMARY KEY')}"]
    for name in dependents:
        col = table.find_column(name)
        body.append(f"    {column_sql(col)}" if col is not None else f"    {name}")
    return [line + "," for line in body[:-1]] + body[-1:]


def _migration_sql(table: Table, new_table: str, keys: Sequence[str], dependents: Sequence[str]) -> List[str]:
    columns = join_names(list(keys) + list(dependents))
    return [
        "-- Data migration instructions:",
        f"-- INSERT INTO {new_table} ({columns})",
        f"-- SELECT DISTINCT {columns} FROM {table.name};",
    ]


# --------------------------------------------------------------------------------------
# Third normal form
# --------------------------------------------------------------------------------------
class ThirdNormalFormAnalyzer(NormalFormAnalyzer):
    """A table is in 3NF when it is in 2NF and no non-key column depends on another non-key column."""

    form = NormalForm.THIRD_NORMAL_FORM

    def __init__(self, second_nf: Optional[SecondNormalFormAnalyzer] = None) -> None:
        self.second_nf = second_nf or SecondNormalFormAnalyzer()

    def analyze(self, schema: Schema) -> List[NormalizationIssue]:
        second_issues = self.second_nf.analyze(schema)
        if second_issues:
            # Already includes 1NF issues when 1NF failed
            return second_issues
        return self.find_violations(schema)

    def find_violations(self, schema: Schema) -> List[NormalizationIssue]:
        issues: List[NormalizationIssue] = []
        for table in schema.tables:
            non_key = table.non_key_columns
            if not non_key:
                continue
            issues.extend(self._entity_groups(table, non_key))
            issues.extend(self._code_name_pairs(table, non_key))
            issues.extend(self._address_columns(table, non_key))
            issues.extend(self._calculated_fields(table, non_key))
            issues.extend(self._implicit_foreign_keys(table, non_key))
        return issues

    def _entity_groups(self, table: Table, non_key: Sequence[Column]) -> List[NormalizationIssue]:
        identifier_suffixes = CONFIG["HEURISTICS"]["IDENTIFIER_SUFFIXES"]
        groups: Dict[str, List[Column]] = {}
        for col in non_key:
            base = extract_base_entity(col.name.lower())
            if base is not None and len(base) >= 2:
                groups.setdefault(base, []).append(col)

        issues = []
        for group in groups.values():
            if len(group) < 2:
                continue
            determinant = next((col for col in group if ends_with_any(col.name, identifier_suffixes)), None)
            if determinant is None:
                continue
            dependents = [col for col in group if col.name != determinant.name]
            if dependents:
                issues.append(self._transitive_issue(table, determinant, dependents))
        return issues

    def _code_name_pairs(self, table: Table, non_key: Sequence[Column]) -> List[NormalizationIssue]:
        heuristics = CONFIG["HEURISTICS"]
        issues = []
        for col in non_key:
            if not ends_with_any(col.name, heuristics["IDENTIFIER_SUFFIXES"]):
                continue
            name = col.name.lower()
            base = name[: name.rfind("_")]
            dependents = [
                other
                for other in non_key
                if other.name.lower().startswith(f"{base}_")
                and ends_with_any(other.name, heuristics["DESCRIPTIVE_SUFFIXES"])
            ]
            if dependents:
                issues.append(self._transitive_issue(table, col, dependents))
        return issues

    def _address_columns(self, table: Table, non_key: Sequence[Column]) -> List[NormalizationIssue]:
        heuristics = CONFIG["HEURISTICS"]
        address = [
            col
            for col in non_key
            if any(token in col.name.lower() for token in heuristics["ADDRESS_TOKENS"])
            or col.name.lower() in heuristics["ADDRESS_NAMES"]
        ]
        if len(address) < heuristics["MIN_ADDRESS_COLUMNS"]:
            return []

        determinant = next((col for col in address if col.name.lower().endswith("_id")), None)
        if determinant is not None:
            dependents = [col for col in address if col.name != determinant.name]
            return [self._transitive_issue(table, determinant, dependents)]

        return [
            self._issue(
                table,
                join_names(col.name for col in address),
                "Address information should be normalized into a separate table",
                "Create an address table and reference it with a foreign key",
                address_table_sql(table, address),
            )
        ]

    def _calculated_fields(self, table: Table, non_key: Sequence[Column]) -> List[NormalizationIssue]:
        heuristics = CONFIG["HEURISTICS"]
        money = [col for col in non_key if any(token in col.name.lower() for token in heuristics["MONEY_TOKENS"])]
        if len(money) < 2:
            return []
        calculated = [
            col for col in money if any(token in col.name.lower() for token in heuristics["CALCULATED_INDICATORS"])
        ]
        if not calculated:
            return []
        return [
            self._issue(
                table,
                join_names(col.name for col in calculated),
                "Potentially calculated fields detected. These may be transitive dependencies.",
                "Consider computing these values on demand rather than storing them, "
                "or ensure they are properly updated whenever their source values change.",
                None,
            )
        ]

    def _implicit_foreign_keys(self, table: Table, non_key: Sequence[Column]) -> List[NormalizationIssue]:
        issues = []
        for candidate in non_key:
            if not candidate.name.lower().endswith("_id") or table.is_foreign_key_column(candidate.name):
                continue
            base = candidate.name[:-3].lower()
            dependents = [
                col for col in non_key if col.name != candidate.name and col.name.lower().startswith(f"{base}_")
            ]
            if dependents:
                issues.append(self._transitive_issue(table, candidate, dependents))
        return issues

    def _transitive_issue(self, table: Table, determinant: Column, dependents: Sequence[Column]) -> NormalizationIssue:
        return self._issue(
            table,
            join_names(col.name for col in dependents),
            "Potential transitive dependency detected: These columns may depend on non-key attribute "
            f"{determinant.name} rather than directly on the primary key",
            f"Consider creating a separate table for {determinant.name} and its dependent columns",
            transitive_dependency_fix_sql(table, determinant, dependents),
        )


def extract_base_entity(column_name: str) -> Optional[str]:
    """Entity a column name talks about: `customer_id` -> `customer`, `product_price` -> `product`."""
    heuristics = CONFIG["HEURISTICS"]
    for suffix in tuple(heuristics["IDENTIFIER_SUFFIXES"]) + tuple(heuristics["ATTRIBUTE_SUFFIXES"]):
        if column_name.endswith(suffix):
            return column_name[: -len(suffix)]
    underscore = column_name.find("_")
    if underscore > 0:
        return column_name[:underscore]
    return None


def transitive_dependency_fix_sql(table: Table, determinant: Column, dependents: Sequence[Column]) -> str:
    name = determinant.name
    new_table = name[: name.rfind("_")] if "_" in name else name
    dependent_names = [col.name for col in dependents]

    lines = ["-- Create a new table to remove transitive dependency", f"CREATE TABLE {new_table} ("]
    lines.extend(_keyed_table_body(table, determinant, dependent_names))
    lines.append(");")
    lines.append("")
    lines.extend(_migration_sql(table, new_table, [name], dependent_names))
    lines.append("")
    lines.append("-- Add foreign key to original table")
    lines.append(f"-- ALTER TABLE {table.name} ADD FOREIGN KEY ({name}) REFERENCES {new_table}({name});")
    lines.append("")
    lines.extend(
        _drop_columns_sql(table, dependent_names, "After migration, drop the dependent columns from the original table")
    )
    return "\n".join(lines)


def address_table_sql(table: Table, address: Sequence[Column]) -> str:
    new_table = f"{table.name}_address"
    link = f"{table.name}_id"
    key = parent_key(table)
    names = [col.name for col in address]

    lines = [
        "-- Create a separate address table",
        f"CREATE TABLE {new_table} (",
        "    id INT AUTO_INCREMENT PRIMARY KEY,",
        f"    {link} INT NOT NULL,",
    ]
    lines.extend(f"    {column_sql(col, ',')}" for col in address)
    lines.append(f"    FOREIGN KEY ({link}) REFERENCES {table.name}({key})")
    lines.append(");")
    lines.append("")
    lines.append("-- Data migration instructions:")
    lines.append(f"-- INSERT INTO {new_table} ({link}, {join_names(names)})")
    lines.append(f"-- SELECT {key}, {join_names(names)} FROM {table.name};")
    lines.append("")
    lines.extend(_drop_columns_sql(table, names, "After migration, drop the address columns from the original table"))
    return "\n".join(lines)
