"""
Schema normalization audit.

Reads DDL scripts (or reflects live databases through SQLAlchemy), checks every
table against the first three normal forms and writes the findings to disk:

    output/run_<timestamp>/
        manifest.json
        summary.csv
        source_<name>/analysis.json
        source_<name>/improvement.sql
        source_<name>/report.md

Run `python normalization_audit.py schema.sql` or `python normalization_audit.py --demo`.
All defaults live in `normalization_config.CONFIG`.

The generated SQL is a proposal for review. Only table creation is emitted as
executable SQL; data migration and column drops are left commented out.
"""
from __future__ import annotations

import argparse
import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.engine import make_url

from normal_form_analyzers import (
    FirstNormalFormAnalyzer,
    SecondNormalFormAnalyzer,
    ThirdNormalFormAnalyzer,
    critical_issues,
)
from normalization_config import CONFIG
from schema_builder import MetadataReader, SchemaBuilder, split_statements
from schema_model import (
    FORM_ORDER,
    AnalysisResult,
    Column,
    Constraint,
    ForeignKey,
    NormalForm,
    NormalizationIssue,
    Schema,
    Table,
    constraint_kind,
    empty_issue_buckets,
)


# --------------------------------------------------------------------------------------
# Errors
# --------------------------------------------------------------------------------------
class SchemaAnalysisError(Exception):
    """Raised when a schema cannot be analyzed at all."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


# --------------------------------------------------------------------------------------
# Orchestration
# --------------------------------------------------------------------------------------
def deduplicate_issues(issues: Iterable[NormalizationIssue]) -> List[NormalizationIssue]:
    """Drop repeated (table, columns, description) issues, keeping the first."""
    seen = set()
    unique: List[NormalizationIssue] = []
    for issue in issues:
        key = (issue.table_name, issue.column_name or "", issue.description)
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique


def determine_achieved_form(issues_by_form: Dict[NormalForm, List[NormalizationIssue]]) -> Optional[NormalForm]:
    """Highest normal form whose checks passed; None when even 1NF fails."""
    if critical_issues(issues_by_form.get(NormalForm.FIRST_NORMAL_FORM, [])):
        return None
    if issues_by_form.get(NormalForm.SECOND_NORMAL_FORM):
        return NormalForm.FIRST_NORMAL_FORM
    if issues_by_form.get(NormalForm.THIRD_NORMAL_FORM):
        return NormalForm.SECOND_NORMAL_FORM
    return NormalForm.THIRD_NORMAL_FORM


class NormalizationService:
    """Builds a schema and runs the 1NF -> 2NF -> 3NF pipeline over it.

    The service keeps no state between calls, so one instance can serve any
    number of analyses.
    """

    def __init__(
        self,
        dialect: Optional[str] = None,
        first_nf: Optional[FirstNormalFormAnalyzer] = None,
        second_nf: Optional[SecondNormalFormAnalyzer] = None,
        third_nf: Optional[ThirdNormalFormAnalyzer] = None,
    ) -> None:
        self.dialect = dialect
        self.first_nf = first_nf or FirstNormalFormAnalyzer()
        self.second_nf = second_nf or SecondNormalFormAnalyzer(self.first_nf)
        self.third_nf = third_nf or ThirdNormalFormAnalyzer(self.second_nf)

    def analyze_schema(self, sql_text: str) -> AnalysisResult:
        try:
            builder = SchemaBuilder(dialect=self.dialect)
            schema = builder.build(split_statements(sql_text, builder.dialect))
        except Exception as exc:
            raise SchemaAnalysisError(f"Error analyzing schema: {exc}", exc) from exc

        if builder.failed_count and not builder.parsed_count:
            raise SchemaAnalysisError(
                f"Error analyzing schema: none of the {builder.failed_count} statement(s) could be parsed"
            )
        return self._analyze_wrapped(schema, builder.warnings)

    def analyze_database(self, url: str, db_schema: Optional[str] = None) -> AnalysisResult:
        """Reflect a live database and analyze it like a parsed script."""
        try:
            schema, warnings = MetadataReader.from_url(url, db_schema=db_schema).read_schema()
        except Exception as exc:
            raise SchemaAnalysisError(f"Error reflecting database: {exc}", exc) from exc
        return self._analyze_wrapped(schema, warnings)

    def analyze(self, schema: Schema, warnings: Sequence[str] = ()) -> AnalysisResult:
        """Run the gated pipeline over an already built schema.

        A stage only runs when the previous one left nothing blocking: critical
        1NF issues stop 2NF, and any 2NF issue stops 3NF.
        """
        issues_by_form = empty_issue_buckets()

        first_issues = self.first_nf.find_violations(schema)
        issues_by_form[NormalForm.FIRST_NORMAL_FORM] = first_issues
        first_passed = not critical_issues(first_issues)

        if first_passed:
            issues_by_form[NormalForm.SECOND_NORMAL_FORM] = self.second_nf.find_violations(schema)
        second_passed = first_passed and not issues_by_form[NormalForm.SECOND_NORMAL_FORM]

        if second_passed:
            issues_by_form[NormalForm.THIRD_NORMAL_FORM] = deduplicate_issues(self.third_nf.find_violations(schema))

        return AnalysisResult(
            schema=schema,
            achieved_form=determine_achieved_form(issues_by_form),
            issues_by_form=issues_by_form,
            warnings=list(warnings),
        )

    def _analyze_wrapped(self, schema: Schema, warnings: Sequence[str]) -> AnalysisResult:
        try:
            return self.analyze(schema, warnings)
        except Exception as exc:
            raise SchemaAnalysisError(f"Error analyzing schema: {exc}", exc) from exc

    @staticmethod
    def generate_improvement_sql(result: AnalysisResult) -> str:
        form = result.achieved_form.display if result.achieved_form is not None else "Not normalized"
        parts = [
            "-- SQL Statements to Improve Schema Normalization\n",
            f"-- Current Normalization Level: {form}\n\n",
        ]
        for nf in FORM_ORDER:
            issues = result.issues_by_form.get(nf, [])
            if not issues:
                continue
            parts.append(f"-- {nf.display} Issues\n")
            for issue in issues:
                if issue.has_fix:
                    parts.append(f"-- Issue: {issue.description}\n")
                    parts.append(f"{issue.fix_sql}\n\n")
        return "".join(parts)


# --------------------------------------------------------------------------------------
# Artifact writer
# --------------------------------------------------------------------------------------
class ArtifactWriter:
    """Handles filesystem output for both machine-readable and human-readable artifacts."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.manifest: Dict[str, Any] = {"sources": []}
        self.summary_rows: List[List[Any]] = []

    def source_folder(self, source: str) -> Path:
        return self.base_path / f"source_{source}"

    def write_json(self, path: Path, obj: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(obj, indent=2, default=str))

    def write_sql(self, path: Path, sql: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(sql)

    def append_manifest(self, entry: Dict[str, Any]) -> None:
        self.manifest["sources"].append(entry)

    def finalize(self) -> None:
        (self.base_path / "manifest.json").write_text(json.dumps(self.manifest, indent=2, default=str))
        with (self.base_path / "summary.csv").open("w", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(["source", "schema", "tables", "achieved_form", "1nf_issues", "2nf_issues", "3nf_issues", "warnings"])
            for row in self.summary_rows:
                writer.writerow(row)

    def write_report(self, path: Path, source: str, result: AnalysisResult) -> None:
        schema = result.schema
        achieved = result.achieved_form.display if result.achieved_form is not None else "Not normalized"
        lines = [
            f"# Normalization Audit Report: {source}",
            "",
            "## Schema",
            f"- Name: {schema.name}",
            f"- Tables: {len(schema.tables)}",
            f"- Relationships: {len(schema.relationships)}",
            f"- Achieved normal form: {achieved}",
            "",
        ]
        if result.warnings:
            lines.append("## Parser Warnings")
            lines.extend(f"- {warning}" for warning in result.warnings)
            lines.append("")

        for form in FORM_ORDER:
            issues = result.issues_by_form.get(form, [])
            lines.append(f"## {form.display} Issues")
            if not issues:
                lines.append("- None found.")
            for issue in issues:
                target = f"{issue.table_name} ({issue.column_name})" if issue.column_name else issue.table_name
                lines.append(f"- **{target}**: {issue.description}")
                if issue.suggestion:
                    lines.append(f"  - Suggestion: {issue.suggestion}")
            lines.append("")

        lines.append("## Improvement SQL")
        if any(issue.has_fix for issue in result.all_issues()):
            lines.append("- See improvement.sql. Review every statement before applying it.")
        else:
            lines.append("- No changes proposed.")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines))


# --------------------------------------------------------------------------------------
# Runner
# --------------------------------------------------------------------------------------
class Runner:
    """Orchestrates the audit across configured sources."""

    def __init__(self, sources: Optional[List[Dict[str, Any]]] = None, output_base: Optional[str] = None) -> None:
        self.sources = sources if sources is not None else CONFIG["SOURCES"]
        ts = datetime.now(timezone.utc).strftime("run_%Y%m%d_%H%M%S")
        self.output_root = Path(output_base or CONFIG["OUTPUT"]["BASE_PATH"]) / ts
        self.service = NormalizationService(dialect=CONFIG["PARSER"]["DIALECT"])
        self.writer = ArtifactWriter(self.output_root)

    def run(self) -> Dict[str, AnalysisResult]:
        # Missing files are a usage error, not an analysis failure
        for source in self.sources:
            if source.get("sql_path") and not Path(source["sql_path"]).is_file():
                raise FileNotFoundError(f"DDL file not found: {source['sql_path']}")

        results: Dict[str, AnalysisResult] = {}
        for source in self.sources:
            name = source["name"]
            print(f"[INFO] Analyzing source {name}")
            try:
                result = self._analyze_source(source)
            except SchemaAnalysisError as exc:
                print(f"[ERROR] Failed analyzing {name}: {exc}")
                self.writer.append_manifest({"source": name, "error": str(exc)})
                continue

            folder = self.writer.source_folder(name)
            self.writer.write_json(folder / "analysis.json", self._result_to_dict(result))
            self.writer.write_sql(folder / "improvement.sql", self.service.generate_improvement_sql(result))
            self.writer.write_report(folder / "report.md", name, result)

            achieved = result.achieved_form.display if result.achieved_form is not None else None
            counts = [len(result.issues_by_form[form]) for form in FORM_ORDER]
            self.writer.append_manifest(
                {
                    "source": name,
                    "schema": result.schema.name,
                    "tables": len(result.schema.tables),
                    "achieved_form": achieved,
                    "issue_count": result.issue_count(),
                }
            )
            self.writer.summary_rows.append(
                [name, result.schema.name, len(result.schema.tables), achieved or "", *counts, len(result.warnings)]
            )
            print(f"[INFO] {name}: {len(result.schema.tables)} table(s), achieved {achieved or 'no normal form'}")
            results[name] = result

        self.writer.finalize()
        print(f"[INFO] Run complete. Artifacts at {self.output_root}")
        return results

    def _analyze_source(self, source: Dict[str, Any]) -> AnalysisResult:
        if source.get("sqlalchemy_url"):
            return self.service.analyze_database(source["sqlalchemy_url"], db_schema=source.get("db_schema"))
        if source.get("sql_path"):
            return self.service.analyze_schema(Path(source["sql_path"]).read_text())
        if "sql_text" in source:
            return self.service.analyze_schema(source["sql_text"])
        raise SchemaAnalysisError(f"Source {source['name']} has no sql_path, sql_text or sqlalchemy_url")

    @staticmethod
    def _result_to_dict(result: AnalysisResult) -> Dict[str, Any]:
        return {
            "schema": Runner._schema_to_dict(result.schema),
            "achieved_form": result.achieved_form.display if result.achieved_form is not None else None,
            "issues_by_form": {
                form.display: [Runner._issue_to_dict(issue) for issue in result.issues_by_form.get(form, [])]
                for form in FORM_ORDER
            },
            "warnings": list(result.warnings),
        }

    @staticmethod
    def _schema_to_dict(schema: Schema) -> Dict[str, Any]:
        return {
            "name": schema.name,
            "tables": [Runner._table_to_dict(table) for table in schema.tables],
        }

    @staticmethod
    def _table_to_dict(table: Table) -> Dict[str, Any]:
        return {
            "name": table.name,
            "columns": [Runner._column_to_dict(col) for col in table.columns],
            "constraints": [Runner._constraint_to_dict(c) for c in table.constraints],
            "relationships": [
                {
                    "target_table": rel.target_table,
                    "source_columns": list(rel.source_columns),
                    "target_columns": list(rel.target_columns),
                }
                for rel in table.relationships
            ],
        }

    @staticmethod
    def _column_to_dict(col: Column) -> Dict[str, Any]:
        return {
            "name": col.name,
            "data_type": col.data_type,
            "nullable": col.nullable,
            "default_value": col.default_value,
        }

    @staticmethod
    def _constraint_to_dict(constraint: Constraint) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": constraint_kind(constraint),
            "name": constraint.name,
            "columns": list(constraint.columns),
        }
        if isinstance(constraint, ForeignKey):
            data["referenced_table"] = constraint.referenced_table
            data["referenced_columns"] = list(constraint.referenced_columns)
        return data

    @staticmethod
    def _issue_to_dict(issue: NormalizationIssue) -> Dict[str, Any]:
        return {
            "violated_form": issue.violated_form.display,
            "table_name": issue.table_name,
            "column_name": issue.column_name,
            "description": issue.description,
            "suggestion": issue.suggestion,
            "fix_sql": issue.fix_sql,
        }


def _source_name(url: str) -> str:
    database = make_url(url).database
    return Path(database).stem if database else "database"


def _build_sources(args: argparse.Namespace) -> List[Dict[str, Any]]:
    sources: List[Dict[str, Any]] = []
    for path in args.sql_files:
        sources.append({"name": Path(path).stem, "sql_path": path})
    for url in args.url or []:
        sources.append({"name": _source_name(url), "sqlalchemy_url": url})
    if args.demo:
        from operations_dataset_sql import OPERATIONS_DATASET_SQL

        sources.append({"name": "OperationsDemo", "sql_text": OPERATIONS_DATASET_SQL})
    return sources


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit relational schemas for 1NF/2NF/3NF compliance.")
    parser.add_argument("sql_files", nargs="*", help="DDL scripts to analyze.")
    parser.add_argument("--url", action="append", help="SQLAlchemy URL of a database to reflect (repeatable).")
    parser.add_argument("--dialect", help=f"sqlglot dialect of the DDL scripts (default {CONFIG['PARSER']['DIALECT']}).")
    parser.add_argument("--output", help=f"Output base folder (default {CONFIG['OUTPUT']['BASE_PATH']}).")
    parser.add_argument("--demo", action="store_true", help="Analyze the bundled operations demo schema.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> Dict[str, AnalysisResult]:
    args = _parse_args(argv)
    if args.dialect:
        CONFIG["PARSER"]["DIALECT"] = args.dialect
    if args.output:
        CONFIG["OUTPUT"]["BASE_PATH"] = args.output
    sources = _build_sources(args)
    if sources:
        CONFIG["SOURCES"] = sources
    if not CONFIG["SOURCES"]:
        print("[ERROR] No sources given. Pass DDL files, --url or --demo, or configure CONFIG['SOURCES'].")
        return {}
    return Runner().run()


if __name__ == "__main__":
    main()
