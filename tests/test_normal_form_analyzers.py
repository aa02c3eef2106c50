import unittest

import pytest

from normal_form_analyzers import (
    FirstNormalFormAnalyzer,
    SecondNormalFormAnalyzer,
    ThirdNormalFormAnalyzer,
    extract_base_entity,
    is_critical_issue,
)
from schema_model import Column, ForeignKey, NormalForm, NormalizationIssue, PrimaryKey, Schema, Table


def make_table(name, columns, pk=(), fks=()):
    cols = tuple(Column(col_name, col_type, nullable) for col_name, col_type, nullable in columns)
    constraints = []
    if pk:
        constraints.append(PrimaryKey(name=f"pk_{name}", columns=tuple(pk)))
    constraints.extend(fks)
    return Table(name=name, columns=cols, constraints=tuple(constraints))


def make_schema(*tables):
    return Schema(name="test", tables=tuple(tables)).resolve_relationships()


def issue(description, column_name=None):
    return NormalizationIssue(
        violated_form=NormalForm.FIRST_NORMAL_FORM,
        table_name="t",
        column_name=column_name,
        description=description,
    )


class TestCriticalIssue(unittest.TestCase):
    def test_structured_data_is_advisory(self):
        self.assertFalse(is_critical_issue(issue("Column might contain structured data (non-atomic values)", "payload")))

    def test_repeating_group_of_two_id_columns_is_advisory(self):
        self.assertFalse(is_critical_issue(issue("Potential repeating group detected: ref_id columns", "ref_id1, ref_id2")))

    def test_other_repeating_groups_are_critical(self):
        self.assertTrue(is_critical_issue(issue("Potential repeating group detected: phone columns", "phone1, phone2")))
        self.assertTrue(
            is_critical_issue(issue("Potential repeating group detected: ref_id columns", "ref_id1, ref_id2, ref_id3"))
        )

    def test_missing_primary_key_is_critical(self):
        self.assertTrue(is_critical_issue(issue("Table does not have a primary key")))


class TestFirstNormalForm(unittest.TestCase):
    def setUp(self):
        self.analyzer = FirstNormalFormAnalyzer()

    def test_missing_primary_key(self):
        schema = make_schema(make_table("logs", [("message", "VARCHAR(200)", True)]))
        issues = self.analyzer.analyze(schema)
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].description, "Table does not have a primary key")
        self.assertIsNone(issues[0].column_name)
        self.assertEqual(issues[0].fix_sql, "ALTER TABLE logs ADD COLUMN id INT AUTO_INCREMENT PRIMARY KEY;")
        self.assertFalse(self.analyzer.is_compliant(schema))

    def test_multi_valued_column(self):
        schema = make_schema(
            make_table(
                "products",
                [("product_id", "INT", False), ("tags", "SET('new', 'sale')", False), ("attributes", "JSON", True)],
                pk=["product_id"],
            )
        )
        issues = self.analyzer.analyze(schema)
        self.assertEqual([i.column_name for i in issues], ["tags", "attributes"])
        self.assertTrue(all(i.description == "Column potentially contains multi-valued attributes" for i in issues))

        fix = issues[0].fix_sql
        self.assertIn("CREATE TABLE products_tags (", fix)
        self.assertIn("tags_value TEXT NOT NULL,", fix)
        self.assertIn("FOREIGN KEY (products_id) REFERENCES products(product_id)", fix)
        self.assertIn("-- ALTER TABLE products DROP COLUMN tags;", fix)

    def test_structured_text_column_is_a_warning(self):
        schema = make_schema(
            make_table(
                "events",
                [("event_id", "INT", False), ("payload", "TEXT", True), ("blob_data", "VARCHAR(MAX)", True)],
                pk=["event_id"],
            )
        )
        issues = self.analyzer.analyze(schema)
        self.assertEqual([i.column_name for i in issues], ["payload", "blob_data"])
        self.assertTrue(all(i.fix_sql is None for i in issues))
        self.assertFalse(any(is_critical_issue(i) for i in issues))

    def test_atomic_text_and_blob_names_are_not_reported(self):
        schema = make_schema(
            make_table(
                "articles",
                [
                    ("article_id", "INT", False),
                    ("description", "TEXT", True),
                    ("body_content", "LONGTEXT", True),
                    ("cover_photo", "BLOB", True),
                ],
                pk=["article_id"],
            )
        )
        self.assertTrue(self.analyzer.is_compliant(schema))

    def test_repeating_group(self):
        schema = make_schema(
            make_table(
                "students",
                [
                    ("student_id", "INT", False),
                    ("name", "VARCHAR(100)", True),
                    ("course1", "VARCHAR(50)", True),
                    ("course2", "VARCHAR(50)", True),
                    ("course3", "VARCHAR(50)", True),
                ],
                pk=["student_id"],
            )
        )
        issues = self.analyzer.analyze(schema)
        self.assertEqual(len(issues), 1)
        group = issues[0]
        self.assertEqual(group.column_name, "course1, course2, course3")
        self.assertEqual(group.description, "Potential repeating group detected: course columns")
        self.assertTrue(is_critical_issue(group))
        self.assertIn("CREATE TABLE students_course (", group.fix_sql)
        self.assertIn("-- SELECT student_id, course2 FROM students WHERE course2 IS NOT NULL;", group.fix_sql)

    def test_single_numbered_column_is_not_a_group(self):
        schema = make_schema(
            make_table("addresses", [("address_id", "INT", False), ("line1", "VARCHAR(100)", True)], pk=["address_id"])
        )
        self.assertEqual(self.analyzer.analyze(schema), [])


class TestSecondNormalForm(unittest.TestCase):
    def setUp(self):
        self.analyzer = SecondNormalFormAnalyzer()

    def test_critical_first_form_issues_are_returned_unchanged(self):
        schema = make_schema(make_table("logs", [("message", "VARCHAR(200)", True)]))
        issues = self.analyzer.analyze(schema)
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].violated_form, NormalForm.FIRST_NORMAL_FORM)

    def test_warnings_do_not_block(self):
        schema = make_schema(make_table("events", [("event_id", "INT", False), ("payload", "TEXT", True)], pk=["event_id"]))
        self.assertEqual(self.analyzer.analyze(schema), [])
        self.assertTrue(self.analyzer.is_compliant(schema))

    def test_composite_key_with_foreign_key(self):
        courses = make_table("courses", [("course_id", "INT", False), ("title", "VARCHAR(100)", True)], pk=["course_id"])
        enrollments = make_table(
            "enrollments",
            [
                ("student_id", "INT", False),
                ("course_id", "INT", False),
                ("course_title", "VARCHAR(100)", True),
                ("grade", "CHAR(2)", True),
            ],
            pk=["student_id", "course_id"],
            fks=[ForeignKey("fk_course", ("course_id",), "courses", ("course_id",))],
        )
        issues = self.analyzer.find_violations(make_schema(courses, enrollments))

        self.assertEqual(len(issues), 3)
        self.assertTrue(all(i.violated_form == NormalForm.SECOND_NORMAL_FORM for i in issues))
        self.assertTrue(all(i.column_name == "course_title" for i in issues))
        self.assertEqual(
            issues[0].description,
            "Potential partial dependency detected: These columns may depend on course_id "
            "(part of the primary key) rather than the full primary key",
        )
        self.assertIn("CREATE TABLE enrollments_courses (", issues[0].fix_sql)
        self.assertIn("PRIMARY KEY (course_id),", issues[0].fix_sql)
        self.assertIn("FOREIGN KEY (course_id) REFERENCES courses(course_id)", issues[0].fix_sql)
        self.assertIn("CREATE TABLE enrollments_course (", issues[1].fix_sql)
        self.assertIn("This column may depend on course_id", issues[2].description)

    def test_composite_key_by_naming_only(self):
        order_items = make_table(
            "order_items",
            [
                ("order_id", "INT", False),
                ("product_id", "INT", False),
                ("quantity", "INT", True),
                ("product_name", "VARCHAR(100)", True),
            ],
            pk=["order_id", "product_id"],
        )
        issues = self.analyzer.find_violations(make_schema(order_items))
        self.assertEqual(len(issues), 2)
        self.assertTrue(all("product_name" in i.column_name for i in issues))
        self.assertIn("    product_id INT NOT NULL PRIMARY KEY,", issues[0].fix_sql)
        self.assertIn("    product_name VARCHAR(100)", issues[0].fix_sql)

    def test_column_matching_two_key_bases_is_reported_once(self):
        order_items = make_table(
            "order_items",
            [("order_id", "INT", False), ("product_id", "INT", False), ("order_product_note", "VARCHAR(200)", True)],
            pk=["order_id", "product_id"],
        )
        issues = self.analyzer.find_violations(make_schema(order_items))
        single = [i for i in issues if "This column may depend on" in i.description]
        self.assertEqual(len(single), 1)
        self.assertEqual(single[0].column_name, "order_product_note")
        self.assertIn("depend on order_id (part of the primary key)", single[0].description)

    def test_single_key_foreign_key_attributes(self):
        customers = make_table("customers", [("customer_id", "INT", False)], pk=["customer_id"])
        orders = make_table(
            "orders",
            [
                ("order_id", "INT", False),
                ("customer_id", "INT", False),
                ("customer_email", "VARCHAR(255)", True),
                ("placed_on", "DATE", True),
            ],
            pk=["order_id"],
            fks=[ForeignKey(None, ("customer_id",), "customers", ("customer_id",))],
        )
        issues = self.analyzer.find_violations(make_schema(customers, orders))
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].column_name, "customer_email")
        self.assertEqual(
            issues[0].description,
            "Potential partial dependency detected: These columns may depend on customer_id rather than the primary key",
        )


class TestThirdNormalForm(unittest.TestCase):
    def setUp(self):
        self.analyzer = ThirdNormalFormAnalyzer()

    def test_second_form_issues_are_returned_unchanged(self):
        order_items = make_table(
            "order_items",
            [("order_id", "INT", False), ("product_id", "INT", False), ("product_name", "VARCHAR(100)", True)],
            pk=["order_id", "product_id"],
        )
        issues = self.analyzer.analyze(make_schema(order_items))
        self.assertTrue(issues)
        self.assertTrue(all(i.violated_form == NormalForm.SECOND_NORMAL_FORM for i in issues))

    def test_transitive_dependency_on_identifier(self):
        employees = make_table(
            "employees",
            [
                ("employee_id", "INT", False),
                ("department_id", "INT", True),
                ("department_name", "VARCHAR(100)", True),
                ("salary", "DECIMAL(10, 2)", True),
            ],
            pk=["employee_id"],
        )
        issues = self.analyzer.find_violations(make_schema(employees))
        # grouping, code/name and implicit foreign key heuristics agree
        self.assertEqual(len(issues), 3)
        self.assertEqual(len(set(issues)), 1)

        found = issues[0]
        self.assertEqual(found.column_name, "department_name")
        self.assertEqual(
            found.description,
            "Potential transitive dependency detected: These columns may depend on non-key attribute "
            "department_id rather than directly on the primary key",
        )
        self.assertIn("CREATE TABLE department (", found.fix_sql)
        self.assertIn("    department_id INT PRIMARY KEY,", found.fix_sql)
        self.assertIn(
            "-- ALTER TABLE employees ADD FOREIGN KEY (department_id) REFERENCES department(department_id);",
            found.fix_sql,
        )

    def test_declared_foreign_key_is_not_an_implicit_determinant(self):
        departments = make_table("departments", [("department_id", "INT", False)], pk=["department_id"])
        employees = make_table(
            "employees",
            [("employee_id", "INT", False), ("department_id", "INT", True), ("department_name", "VARCHAR(100)", True)],
            pk=["employee_id"],
            fks=[ForeignKey(None, ("department_id",), "departments", ("department_id",))],
        )
        issues = self.analyzer.find_violations(make_schema(departments, employees))
        # grouping and code/name only
        self.assertEqual(len(issues), 2)

    def test_address_columns_without_identifier(self):
        customers = make_table(
            "customers",
            [
                ("customer_id", "INT", False),
                ("street_address", "VARCHAR(200)", True),
                ("city", "VARCHAR(100)", True),
                ("state", "VARCHAR(50)", True),
                ("zip", "VARCHAR(20)", True),
            ],
            pk=["customer_id"],
        )
        issues = self.analyzer.find_violations(make_schema(customers))
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].column_name, "street_address, city, state, zip")
        self.assertEqual(issues[0].description, "Address information should be normalized into a separate table")
        self.assertIn("CREATE TABLE customers_address (", issues[0].fix_sql)

    def test_address_columns_with_identifier(self):
        sites = make_table(
            "sites",
            [
                ("site_id", "INT", False),
                ("address_id", "INT", True),
                ("street", "VARCHAR(200)", True),
                ("city", "VARCHAR(100)", True),
                ("country", "VARCHAR(50)", True),
            ],
            pk=["site_id"],
        )
        issues = self.analyzer.find_violations(make_schema(sites))
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].column_name, "street, city, country")
        self.assertIn("non-key attribute address_id", issues[0].description)
        self.assertIn("CREATE TABLE address (", issues[0].fix_sql)

    def test_calculated_fields_warning(self):
        invoices = make_table(
            "invoices",
            [
                ("invoice_id", "INT", False),
                ("subtotal", "DECIMAL(10, 2)", True),
                ("tax", "DECIMAL(10, 2)", True),
                ("total", "DECIMAL(10, 2)", True),
            ],
            pk=["invoice_id"],
        )
        issues = self.analyzer.find_violations(make_schema(invoices))
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].column_name, "subtotal, total")
        self.assertIsNone(issues[0].fix_sql)

    def test_key_only_table_is_compliant(self):
        links = make_table("links", [("a_id", "INT", False), ("b_id", "INT", False)], pk=["a_id", "b_id"])
        self.assertTrue(self.analyzer.is_compliant(make_schema(links)))


@pytest.mark.parametrize(
    "column, expected",
    [
        ("customer_id", "customer"),
        ("product_price", "product"),
        ("hire_date", "hire"),
        ("first_name", "first"),
        ("misc_value_x", "misc"),
        ("salary", None),
    ],
)
def test_extract_base_entity(column, expected):
    assert extract_base_entity(column) == expected


def test_analyzers_do_not_mutate_the_schema():
    table = make_table("logs", [("message", "VARCHAR(200)", True)])
    schema = make_schema(table)
    snapshot = repr(schema)
    ThirdNormalFormAnalyzer().analyze(schema)
    assert repr(schema) == snapshot


if __name__ == "__main__":
    unittest.main()
