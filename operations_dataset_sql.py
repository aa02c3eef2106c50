"""DDL and a few seed rows for the OperationsDemo schema.

The script is plain ANSI-ish SQL that both SQLite and the MySQL dialect of
sqlglot accept. It is deliberately not fully normalized: `work_order_parts`
repeats the part name next to its composite key, and `work_orders.details` is
a free-form TEXT column.
"""

OPERATIONS_DATASET_SQL = """
CREATE TABLE departments (
    department_id INTEGER NOT NULL,
    title VARCHAR(100) NOT NULL,
    PRIMARY KEY (department_id)
);

CREATE TABLE employees (
    employee_id INTEGER NOT NULL PRIMARY KEY,
    full_name VARCHAR(120) NOT NULL,
    department_id INTEGER,
    hired_on DATE,
    CONSTRAINT fk_employees_department FOREIGN KEY (department_id) REFERENCES departments (department_id)
);

CREATE TABLE work_orders (
    work_order_id INTEGER NOT NULL PRIMARY KEY,
    employee_id INTEGER NOT NULL,
    opened_on DATE NOT NULL,
    status VARCHAR(20) DEFAULT 'open',
    details TEXT,
    FOREIGN KEY (employee_id) REFERENCES employees (employee_id)
);

CREATE TABLE parts (
    part_id INTEGER NOT NULL PRIMARY KEY,
    title VARCHAR(100) NOT NULL,
    unit_cost DECIMAL(10, 2),
    UNIQUE (title)
);

CREATE TABLE work_order_parts (
    work_order_id INTEGER NOT NULL,
    part_id INTEGER NOT NULL,
    quantity INTEGER NOT NULL,
    part_name VARCHAR(100),
    PRIMARY KEY (work_order_id, part_id),
    FOREIGN KEY (work_order_id) REFERENCES work_orders (work_order_id),
    FOREIGN KEY (part_id) REFERENCES parts (part_id)
);

INSERT INTO departments (department_id, title) VALUES (1, 'Maintenance');
INSERT INTO departments (department_id, title) VALUES (2, 'Logistics');

INSERT INTO employees (employee_id, full_name, department_id, hired_on) VALUES (10, 'Ada Byrne', 1, '2021-03-01');
INSERT INTO employees (employee_id, full_name, department_id, hired_on) VALUES (11, 'Oskar Lind', 2, '2022-07-15');

INSERT INTO work_orders (work_order_id, employee_id, opened_on, status, details) VALUES (100, 10, '2024-01-08', 'open', 'Pump 3 leaking, replace seal');
INSERT INTO work_orders (work_order_id, employee_id, opened_on, status, details) VALUES (101, 11, '2024-01-09', 'closed', NULL);

INSERT INTO parts (part_id, title, unit_cost) VALUES (500, 'Seal kit', 12.50);
INSERT INTO parts (part_id, title, unit_cost) VALUES (501, 'Pallet wrap', 4.10);

INSERT INTO work_order_parts (work_order_id, part_id, quantity, part_name) VALUES (100, 500, 2, 'Seal kit');
INSERT INTO work_order_parts (work_order_id, part_id, quantity, part_name) VALUES (101, 501, 6, 'Pallet wrap');
"""
