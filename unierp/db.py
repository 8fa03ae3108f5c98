import logging
import os

import click
import mysql.connector
from flask import current_app, g
from flask.cli import with_appcontext
from mysql.connector import Error
from werkzeug.security import generate_password_hash

log = logging.getLogger(__name__)


# ---------- DATABASE CONNECTION ----------
def connect(cfg):
    return mysql.connector.connect(
        host=cfg["DB_HOST"],
        port=cfg["DB_PORT"],
        user=cfg["DB_USER"],
        password=cfg["DB_PASS"],
        database=cfg["DB_NAME"],
        auth_plugin="mysql_native_password"
    )


def get_db():
    if "db" not in g:
        g.db = connect(current_app.config)
    return g.db


def close_db(exception=None):
    conn = g.pop("db", None)
    if conn is not None:
        conn.close()


# ---------- QUERY HELPERS ----------
def fetch_all(sql, params=()):
    cur = get_db().cursor(dictionary=True)
    try:
        cur.execute(sql, tuple(params))
        return cur.fetchall()
    finally:
        cur.close()


def fetch_one(sql, params=()):
    cur = get_db().cursor(dictionary=True)
    try:
        cur.execute(sql, tuple(params))
        return cur.fetchone()
    finally:
        cur.close()


def scalar(sql, params=()):
    row = fetch_one(sql, params)
    if not row:
        return None
    return next(iter(row.values()))


def execute(sql, params=()):
    """Run a single write and commit. Returns (lastrowid, rowcount)."""
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(sql, tuple(params))
        conn.commit()
        return cur.lastrowid, cur.rowcount
    except Error:
        conn.rollback()
        raise
    finally:
        cur.close()


def execute_many(statements):
    """Run (sql, params) pairs in one transaction. Returns the rowcounts."""
    conn = get_db()
    cur = conn.cursor()
    counts = []
    try:
        for sql, params in statements:
            cur.execute(sql, tuple(params))
            counts.append(cur.rowcount)
        conn.commit()
        return counts
    except Error as e:
        conn.rollback()
        log.error("transaction rolled back: %r", e)
        raise
    finally:
        cur.close()


def placeholders(values):
    return ",".join(["%s"] * len(values))


# ---------- SCHEMA / CLI ----------
def init_db():
    path = os.path.join(os.path.dirname(__file__), "schema.sql")
    with open(path, encoding="utf-8") as f:
        script = f.read()

    conn = get_db()
    cur = conn.cursor()
    try:
        for statement in script.split(";"):
            if statement.strip():
                cur.execute(statement)
        conn.commit()
    finally:
        cur.close()


DEMO_USERS = [
    ("admin", "admin@university.edu", "admin", "System", "Admin"),
    ("dr.smith", "dr.smith@university.edu", "teacher", "John", "Smith"),
    ("accounts", "accounts@university.edu", "accountant", "Asha", "Rao"),
    ("warden", "warden@university.edu", "warden", "Ravi", "Kumar"),
    ("student1", "student1@university.edu", "student", "Priya", "Sharma"),
]

DEMO_COURSES = [
    ("CS101", "Introduction to Computer Science", "CSE", 4, 60),
    ("MATH201", "Calculus I", "MATH", 4, 60),
    ("ENG101", "English Composition", "ENG", 3, 40),
]


def seed_demo(password):
    user_ids = {}
    for username, email, role, first, last in DEMO_USERS:
        uid, _ = execute(
            "INSERT INTO users (username, email, password, role, first_name, last_name) "
            "VALUES (%s,%s,%s,%s,%s,%s)",
            (username, email, generate_password_hash(password), role, first, last)
        )
        user_ids[username] = uid

    execute(
        "INSERT INTO students (user_id, student_code, program, current_semester) VALUES (%s,%s,%s,%s)",
        (user_ids["student1"], "STU0001", "BTech CSE", "Fall 2024")
    )

    for code, title, dept, credits, seats in DEMO_COURSES:
        execute(
            "INSERT INTO courses (code, title, department, credits, max_students, instructor_id, semester) "
            "VALUES (%s,%s,%s,%s,%s,%s,%s)",
            (code, title, dept, credits, seats, user_ids["dr.smith"], "Fall 2024")
        )


@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create the tables."""
    init_db()
    click.echo("Initialized the database.")


@click.command("check-db")
@with_appcontext
def check_db_command():
    """Print the MySQL server version or the connection error."""
    try:
        conn = connect(current_app.config)
        click.echo(f"CONNECTED: MySQL server version {conn.get_server_info()}")
        conn.close()
    except Error as e:
        click.echo(f"CONN ERROR: {e!r}", err=True)
        raise SystemExit(1)


@click.command("seed-demo")
@click.option("--password", default="password123", show_default=True)
@with_appcontext
def seed_demo_command(password):
    """Insert demo users and courses."""
    seed_demo(password)
    click.echo("Demo data inserted.")


def init_app(app):
    app.teardown_appcontext(close_db)
    app.cli.add_command(init_db_command)
    app.cli.add_command(check_db_command)
    app.cli.add_command(seed_demo_command)
