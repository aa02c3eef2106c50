"""
Schema builder: turns DDL text (or a live database) into the schema model.

DDL scripts are split on statement terminators and each statement is parsed
with sqlglot on its own, so one malformed statement only costs that statement:
it is skipped, a warning is printed and kept in `SchemaBuilder.warnings`, and
the build carries on. CREATE TABLE statements become tables; ALTER TABLE ... ADD
PRIMARY KEY / FOREIGN KEY statements attach constraints to tables declared
earlier. Everything else is ignored.

The builder owns the only writable copy of the schema. `build()` validates the
collected tables, resolves relationships and hands out a frozen `Schema`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import sqlglot
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.types import NullType
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError
from sqlglot.tokens import TokenType

from normalization_config import CONFIG
from schema_model import Check, Column, Constraint, ForeignKey, PrimaryKey, Schema, Table, Unique


# --------------------------------------------------------------------------------------
# Utility helpers
# --------------------------------------------------------------------------------------
QUOTE_CHARS = "`\"[]"

# ALTER TABLE shop.orders ADD CONSTRAINT pk_orders PRIMARY KEY (order_id)
ALTER_PRIMARY_KEY_RE = re.compile(
    r"^\s*ALTER\s+TABLE\s+([\w.`\"\[\]]+)\s+ADD\s+(?:CONSTRAINT\s+([\w`\"\[\]]+)\s+)?"
    r"PRIMARY\s+KEY\s*\(([^)]+)\)",
    re.IGNORECASE,
)

# ALTER TABLE orders ADD CONSTRAINT fk_customer FOREIGN KEY (customer_id) REFERENCES customers (id)
ALTER_FOREIGN_KEY_RE = re.compile(
    r"^\s*ALTER\s+TABLE\s+([\w.`\"\[\]]+)\s+ADD\s+(?:CONSTRAINT\s+([\w`\"\[\]]+)\s+)?"
    r"FOREIGN\s+KEY\s*\(([^)]+)\)\s*REFERENCES\s+([\w.`\"\[\]]+)\s*(?:\(([^)]+)\))?",
    re.IGNORECASE,
)


def split_statements(script: str, dialect: Optional[str] = None) -> List[str]:
    """Split a script on `;` terminators, trimming whitespace and dropping empty segments.

    Boundaries come from the sqlglot tokenizer, so a `;` inside a string literal
    or a comment does not end a statement. A script the tokenizer rejects (an
    unterminated string, say) is split on every `;` and the broken statement is
    reported later by the parser.
    """
    try:
        tokens = sqlglot.tokenize(script, read=dialect or CONFIG["PARSER"]["DIALECT"])
    except TokenError:
        return [segment.strip() for segment in script.split(";") if segment.strip()]

    segments = []
    start = 0
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            segments.append(script[start : token.start])
            start = token.start + 1
    segments.append(script[start:])
    return [segment.strip() for segment in segments if segment.strip()]


def unquote_ident(name: str) -> str:
    """Strip identifier quoting and any schema qualifier (`shop.[orders]` -> `orders`)."""
    last = name.strip().split(".")[-1]
    return last.strip(QUOTE_CHARS)


def split_ident_list(text: str) -> Tuple[str, ...]:
    return tuple(unquote_ident(part) for part in text.split(",") if part.strip())


def qualifies(scope_regex: Optional[str], value: str) -> bool:
    """Helper to evaluate regex filters while treating None as pass-through."""
    if scope_regex is None:
        return True
    return re.search(scope_regex, value) is not None


def _snippet(statement: str, limit: int = 80) -> str:
    flat = " ".join(statement.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


# --------------------------------------------------------------------------------------
# Schema builder
# --------------------------------------------------------------------------------------
@dataclass
class TableDraft:
    """Writable table used while the schema is being assembled."""

    name: str
    columns: List[Column] = field(default_factory=list)
    constraints: List[Constraint] = field(default_factory=list)

    def find_column(self, name: str) -> Optional[Column]:
        wanted = name.lower()
        for col in self.columns:
            if col.name.lower() == wanted:
                return col
        return None

    def primary_key(self) -> Optional[PrimaryKey]:
        for constraint in self.constraints:
            if isinstance(constraint, PrimaryKey):
                return constraint
        return None

    def freeze(self) -> Table:
        return Table(name=self.name, columns=tuple(self.columns), constraints=tuple(self.constraints))


class SchemaBuilder:
    """Collects tables from DDL statements and freezes them into a Schema."""

    def __init__(self, dialect: Optional[str] = None, schema_name: Optional[str] = None) -> None:
        self.dialect = dialect or CONFIG["PARSER"]["DIALECT"]
        self.schema_name = schema_name or CONFIG["PARSER"]["SCHEMA_NAME"]
        self.warnings: List[str] = []
        self.parsed_count = 0
        self.failed_count = 0
        self._tables: Dict[str, TableDraft] = {}
        self._built = False

    def warn(self, message: str) -> None:
        print(f"[WARN] {message}")
        self.warnings.append(message)

    # -- statements -------------------------------------------------------------------
    def parse_statement(self, statement: str) -> Optional[exp.Expression]:
        """Parse one statement; a parse failure is recorded and yields None."""
        try:
            parsed = sqlglot.parse_one(statement, read=self.dialect)
        except (ParseError, TokenError) as exc:
            self.failed_count += 1
            self.warn(f"Failed to parse statement '{_snippet(statement)}': {exc}")
            return None
        self.parsed_count += 1
        return parsed

    def add_statement(self, statement: str) -> bool:
        """Apply one statement to the schema. Returns False if it could not be parsed."""
        self._ensure_writable()
        if self._apply_alter_table(statement):
            self.parsed_count += 1
            return True

        parsed = self.parse_statement(statement)
        if parsed is None:
            return False
        if isinstance(parsed, exp.Create) and parsed.kind == "TABLE":
            self._apply_create_table(parsed)
        return True

    def add_script(self, script: str) -> None:
        for statement in split_statements(script, self.dialect):
            self.add_statement(statement)

    # -- tables and constraints -------------------------------------------------------
    def add_table(self, name: str, columns: Sequence[Column], constraints: Sequence[Constraint] = ()) -> bool:
        self._ensure_writable()
        key = name.lower()
        if key in self._tables:
            self.warn(f"Table {name} is declared more than once; keeping the first declaration")
            return False

        draft = TableDraft(name=name)
        for col in columns:
            if draft.find_column(col.name) is not None:
                self.warn(f"Duplicate column {name}.{col.name} ignored")
                continue
            draft.columns.append(col)
        self._tables[key] = draft

        for constraint in constraints:
            self._attach_constraint(draft, constraint)
        return True

    def add_constraint(self, table_name: str, constraint: Constraint) -> bool:
        self._ensure_writable()
        draft = self._tables.get(table_name.lower())
        if draft is None:
            self.warn(f"Constraint on undeclared table {table_name} ignored")
            return False
        return self._attach_constraint(draft, constraint)

    def _attach_constraint(self, draft: TableDraft, constraint: Constraint) -> bool:
        canonical: List[str] = []
        for col_name in constraint.columns:
            col = draft.find_column(col_name)
            if col is None:
                self.warn(f"Constraint on {draft.name} references unknown column {col_name}; constraint ignored")
                return False
            canonical.append(col.name)

        if isinstance(constraint, PrimaryKey) and draft.primary_key() is not None:
            self.warn(f"Table {draft.name} already has a primary key; additional primary key ignored")
            return False

        draft.constraints.append(_with_columns(constraint, tuple(canonical)))
        return True

    # -- freeze -----------------------------------------------------------------------
    def build(self, statements: Optional[Iterable[str]] = None) -> Schema:
        """Apply any remaining statements and return the frozen, resolved schema."""
        if statements is not None:
            for statement in statements:
                self.add_statement(statement)
        self._ensure_writable()
        for draft in self._tables.values():
            draft.constraints = [c for c in (self._complete_foreign_key(draft, c) for c in draft.constraints) if c is not None]
        self._built = True
        schema = Schema(name=self.schema_name, tables=tuple(d.freeze() for d in self._tables.values()))
        return schema.resolve_relationships()

    def _complete_foreign_key(self, draft: TableDraft, constraint: Constraint) -> Optional[Constraint]:
        if not isinstance(constraint, ForeignKey):
            return constraint
        referenced = constraint.referenced_columns
        if not referenced:
            target = self._tables.get(constraint.referenced_table.lower())
            target_pk = target.primary_key() if target is not None else None
            if target_pk is not None and len(target_pk.columns) == len(constraint.columns):
                referenced = target_pk.columns
            else:
                referenced = constraint.columns
        if len(referenced) != len(constraint.columns):
            self.warn(
                f"Foreign key {constraint.columns} on {draft.name} references {len(referenced)} column(s) "
                f"of {constraint.referenced_table}; constraint ignored"
            )
            return None
        return ForeignKey(
            name=constraint.name,
            columns=constraint.columns,
            referenced_table=constraint.referenced_table,
            referenced_columns=tuple(referenced),
        )

    def _ensure_writable(self) -> None:
        if self._built:
            raise RuntimeError("Schema has already been built; create a new SchemaBuilder")

    # -- DDL translation --------------------------------------------------------------
    def _apply_alter_table(self, statement: str) -> bool:
        match = ALTER_PRIMARY_KEY_RE.match(statement)
        if match:
            table, name, cols = match.groups()
            pk = PrimaryKey(name=unquote_ident(name) if name else None, columns=split_ident_list(cols))
            self.add_constraint(unquote_ident(table), pk)
            return True

        match = ALTER_FOREIGN_KEY_RE.match(statement)
        if match:
            table, name, cols, ref_table, ref_cols = match.groups()
            fk = ForeignKey(
                name=unquote_ident(name) if name else None,
                columns=split_ident_list(cols),
                referenced_table=unquote_ident(ref_table),
                referenced_columns=split_ident_list(ref_cols) if ref_cols else (),
            )
            self.add_constraint(unquote_ident(table), fk)
            return True
        return False

    def _apply_create_table(self, statement: exp.Create) -> None:
        schema_node = statement.this
        if not isinstance(schema_node, exp.Schema):
            # CREATE TABLE ... AS SELECT / LIKE carry no column definitions
            return
        table_name = schema_node.this.name

        columns: List[Column] = []
        constraints: List[Constraint] = []
        inline_pk: List[str] = []

        for node in schema_node.expressions:
            if isinstance(node, exp.ColumnDef):
                column, is_pk, inline = self._column_from_def(node)
                columns.append(column)
                if is_pk:
                    inline_pk.append(column.name)
                constraints.extend(inline)
            elif isinstance(node, exp.Constraint):
                for inner in node.expressions:
                    constraint = self._table_constraint(inner, node.name or None)
                    if constraint is not None:
                        constraints.append(constraint)
            else:
                constraint = self._table_constraint(node, None)
                if constraint is not None:
                    constraints.append(constraint)

        if inline_pk:
            # The synthesized inline key is declared ahead of any table-level key
            constraints.insert(0, PrimaryKey(name=f"pk_{table_name}", columns=tuple(inline_pk)))

        self.add_table(table_name, columns, constraints)

    def _column_from_def(self, node: exp.ColumnDef) -> Tuple[Column, bool, List[Constraint]]:
        name = node.name
        kind = node.args.get("kind")
        data_type = kind.sql(dialect=self.dialect) if kind is not None else "TEXT"
        if kind is not None and kind.is_type(exp.DataType.Type.ARRAY) and "ARRAY" not in data_type.upper():
            # postgres renders arrays as `TEXT[]`; keep the ARRAY marker in the type text
            element = kind.expressions[0].sql(dialect=self.dialect) if kind.expressions else ""
            data_type = f"{element} ARRAY".strip()

        nullable = True
        default_value = None
        is_pk = False
        inline: List[Constraint] = []

        for spec in _column_constraint_specs(node):
            if isinstance(spec, exp.NotNullColumnConstraint):
                if not spec.args.get("allow_null"):
                    nullable = False
            elif isinstance(spec, exp.DefaultColumnConstraint):
                if spec.this is not None:
                    default_value = spec.this.sql(dialect=self.dialect)
            elif isinstance(spec, exp.PrimaryKeyColumnConstraint):
                is_pk = True
            elif isinstance(spec, exp.UniqueColumnConstraint):
                inline.append(Unique(name=None, columns=(name,)))
            elif isinstance(spec, exp.Reference):
                ref_table, ref_cols = self._reference_target(spec)
                inline.append(
                    ForeignKey(name=None, columns=(name,), referenced_table=ref_table, referenced_columns=tuple(ref_cols))
                )

        column = Column(name=name, data_type=data_type, nullable=nullable, default_value=default_value)
        return column, is_pk, inline

    def _table_constraint(self, node: exp.Expression, name: Optional[str]) -> Optional[Constraint]:
        if isinstance(node, exp.PrimaryKey):
            return PrimaryKey(name=name, columns=tuple(self._identifier_name(e) for e in node.expressions))

        if isinstance(node, exp.ForeignKey):
            reference = node.args.get("reference")
            if reference is None:
                return None
            ref_table, ref_cols = self._reference_target(reference)
            return ForeignKey(
                name=name,
                columns=tuple(self._identifier_name(e) for e in node.expressions),
                referenced_table=ref_table,
                referenced_columns=tuple(ref_cols),
            )

        if isinstance(node, exp.UniqueColumnConstraint):
            target = node.this
            if not isinstance(target, exp.Schema):
                return None
            if name is None and isinstance(target.this, exp.Identifier):
                name = target.this.name
            return Unique(name=name, columns=tuple(self._identifier_name(e) for e in target.expressions))

        if isinstance(node, exp.CheckColumnConstraint):
            condition = node.this
            columns: List[str] = []
            if condition is not None:
                for col in condition.find_all(exp.Column):
                    if col.name not in columns:
                        columns.append(col.name)
            expression = condition.sql(dialect=self.dialect) if condition is not None else None
            return Check(name=name, columns=tuple(columns), expression=expression)

        # Indexes and anything else carry no normalization meaning
        return None

    def _reference_target(self, reference: exp.Reference) -> Tuple[str, List[str]]:
        target = reference.this
        if isinstance(target, exp.Schema):
            return target.this.name, [self._identifier_name(e) for e in target.expressions]
        return target.name, []

    def _identifier_name(self, node: Any) -> str:
        while isinstance(node, exp.Expression) and not isinstance(node, (exp.Column, exp.Identifier)):
            inner = node.this
            if not isinstance(inner, exp.Expression):
                break
            node = inner
        if isinstance(node, (exp.Column, exp.Identifier)):
            return node.name
        if isinstance(node, exp.Expression):
            return node.sql(dialect=self.dialect)
        return str(node)


def _column_constraint_specs(node: exp.ColumnDef) -> Iterable[exp.Expression]:
    for constraint in node.args.get("constraints") or []:
        if isinstance(constraint, exp.ColumnConstraint):
            kind = constraint.args.get("kind")
            if kind is not None:
                yield kind
        else:
            yield constraint


def _with_columns(constraint: Constraint, columns: Tuple[str, ...]) -> Constraint:
    if isinstance(constraint, ForeignKey):
        return ForeignKey(constraint.name, columns, constraint.referenced_table, constraint.referenced_columns)
    if isinstance(constraint, PrimaryKey):
        return PrimaryKey(constraint.name, columns)
    if isinstance(constraint, Unique):
        return Unique(constraint.name, columns)
    return Check(constraint.name, columns, constraint.expression)


def build_schema(script: str, dialect: Optional[str] = None) -> Schema:
    """Convenience wrapper: parse a whole DDL script into a frozen Schema."""
    builder = SchemaBuilder(dialect=dialect)
    return builder.build(split_statements(script, builder.dialect))


# --------------------------------------------------------------------------------------
# Metadata reader
# --------------------------------------------------------------------------------------
class MetadataReader:
    """Reflects tables, columns and constraints of a live database and respects scope filters."""

    def __init__(self, engine: Engine, db_schema: Optional[str] = None) -> None:
        self.engine = engine
        self.db_schema = db_schema

    @classmethod
    def from_url(cls, url: str, db_schema: Optional[str] = None) -> "MetadataReader":
        return cls(create_engine(url, future=True), db_schema=db_schema)

    def list_tables(self) -> List[str]:
        inspector = inspect(self.engine)
        # scope filters see the schema the tables actually live in
        db_schema = self.db_schema or inspector.default_schema_name or ""
        names = inspector.get_table_names(schema=self.db_schema)
        return [name for name in names if self._in_scope(db_schema, name)]

    def list_columns(self, table: str) -> List[Column]:
        columns = []
        for col in inspect(self.engine).get_columns(table, schema=self.db_schema):
            default = col.get("default")
            col_type = col["type"]
            # untyped columns (SQLite) reflect as NullType, which has no DDL rendering
            data_type = "TEXT" if isinstance(col_type, NullType) else col_type.compile(dialect=self.engine.dialect)
            columns.append(
                Column(
                    name=col["name"],
                    data_type=data_type,
                    nullable=bool(col.get("nullable", True)),
                    default_value=None if default is None else str(default),
                )
            )
        return columns

    def list_constraints(self, table: str) -> List[Constraint]:
        inspector = inspect(self.engine)
        constraints: List[Constraint] = []

        pk = inspector.get_pk_constraint(table, schema=self.db_schema) or {}
        if pk.get("constrained_columns"):
            constraints.append(PrimaryKey(name=pk.get("name"), columns=tuple(pk["constrained_columns"])))

        for fk in inspector.get_foreign_keys(table, schema=self.db_schema):
            constraints.append(
                ForeignKey(
                    name=fk.get("name"),
                    columns=tuple(fk["constrained_columns"]),
                    referenced_table=fk["referred_table"],
                    referenced_columns=tuple(fk.get("referred_columns") or ()),
                )
            )

        try:
            for uq in inspector.get_unique_constraints(table, schema=self.db_schema):
                constraints.append(Unique(name=uq.get("name"), columns=tuple(uq["column_names"])))
        except NotImplementedError:
            print(f"[WARN] Dialect {self.engine.dialect.name} cannot reflect unique constraints")

        try:
            for ck in inspector.get_check_constraints(table, schema=self.db_schema):
                constraints.append(Check(name=ck.get("name"), expression=ck.get("sqltext")))
        except NotImplementedError:
            print(f"[WARN] Dialect {self.engine.dialect.name} cannot reflect check constraints")

        return constraints

    def read_schema(self, name: Optional[str] = None) -> Tuple[Schema, List[str]]:
        """Reflect every in-scope table. Returns the schema and the builder warnings."""
        builder = SchemaBuilder(schema_name=name or self.db_schema or "reflected_schema")
        for table in self.list_tables():
            builder.add_table(table, self.list_columns(table), self.list_constraints(table))
        return builder.build(), builder.warnings

    def _in_scope(self, db_schema: str, table: str) -> bool:
        scope = CONFIG["SCOPE"]
        if scope.get("TABLE_ALLOWLIST") and table not in scope["TABLE_ALLOWLIST"]:
            return False
        if not qualifies(scope.get("INCLUDE_SCHEMAS"), db_schema):
            return False
        if not qualifies(scope.get("INCLUDE_TABLES"), table):
            return False
        if scope.get("EXCLUDE_SCHEMAS") and re.search(scope["EXCLUDE_SCHEMAS"], db_schema):
            return False
        if scope.get("EXCLUDE_TABLES") and re.search(scope["EXCLUDE_TABLES"], table):
            return False
        return True
