"""
Configuration for the schema normalization audit.

All tunables live in the CONFIG constant below so the audit can be invoked as
`python normalization_audit.py schema.sql` without any extra files. Command-line
flags override SOURCES, OUTPUT and the parser dialect; the heuristic token lists
are only meant to be edited here.
"""
from __future__ import annotations

from typing import Any, Dict


CONFIG: Dict[str, Any] = {
    "SOURCES": [
        # Each source is either a DDL script ("sql_path") or a live database
        # reflected through SQLAlchemy ("sqlalchemy_url").
        # {"name": "Shop", "sql_path": "ddl/shop.sql"},
        # {"name": "OperationsDemo", "sqlalchemy_url": "sqlite:///operations_demo.db"},
    ],
    "SCOPE": {
        # Only applied when reflecting a live database.
        "INCLUDE_SCHEMAS": None,  # regex or None
        "EXCLUDE_SCHEMAS": None,
        "INCLUDE_TABLES": None,
        "EXCLUDE_TABLES": None,
        # Optional explicit allowlist of table names
        "TABLE_ALLOWLIST": None,
    },
    "PARSER": {
        # sqlglot dialect used to read DDL scripts
        "DIALECT": "mysql",
        "SCHEMA_NAME": "parsed_schema",
    },
    "HEURISTICS": {
        # 1NF: declared types that hold several values per row
        "MULTI_VALUED_TYPES": ("SET", "ENUM", "JSON", "ARRAY"),
        # 1NF: declared types that may hide structured content
        "STRUCTURED_TYPES": ("TEXT", "BLOB", "JSON"),
        # Column-name tokens that mark TEXT / BLOB content as atomic
        "ATOMIC_TEXT_NAMES": ("content", "description", "bio", "comment", "note", "article"),
        "ATOMIC_BLOB_NAMES": ("image", "photo", "thumbnail", "file", "attachment"),
        # 2NF / 3NF naming conventions
        "IDENTIFIER_SUFFIXES": ("_id", "_code", "_key", "_no"),
        "ATTRIBUTE_SUFFIXES": (
            "_name", "_description", "_address", "_city", "_state", "_zip", "_country",
            "_date", "_time", "_price", "_cost", "_quantity", "_amount", "_total",
        ),
        "DESCRIPTIVE_SUFFIXES": ("_name", "_desc", "_description", "_title"),
        "ADDRESS_TOKENS": ("address", "street"),
        "ADDRESS_NAMES": ("city", "state", "zip", "postal_code", "country"),
        "MIN_ADDRESS_COLUMNS": 3,
        "MONEY_TOKENS": ("price", "cost", "amount", "total", "tax", "discount"),
        "CALCULATED_INDICATORS": ("total", "subtotal", "net", "gross", "final", "discounted"),
    },
    "OUTPUT": {
        "BASE_PATH": "output",
    },
}
