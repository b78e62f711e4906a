#!/usr/bin/env python3
"""Create ProctorLens tables for a local setup (production uses `flask db upgrade`)"""
import sys
import os
from dotenv import load_dotenv

load_dotenv()

sys.path.insert(0, os.path.dirname(__file__))

REQUIRED_TABLES = (
    'users', 'user_sessions', 'jobs', 'attempts',
    'proctoring_sessions', 'proctoring_violations', 'proctoring_snapshots',
    'audit_logs', 'notifications',
)


def main():
    from sqlalchemy import inspect
    from app import create_app
    from extensions import db
    import models  # noqa: F401  registers every table on the metadata

    app = create_app()
    with app.app_context():
        db.create_all()
        tables = set(inspect(db.engine).get_table_names())
        uri = app.config['SQLALCHEMY_DATABASE_URI']

    print(f"Database: {uri.split('@')[-1]}")
    for table in REQUIRED_TABLES:
        print(f"  {'✓' if table in tables else '✗'} {table}")

    missing = [t for t in REQUIRED_TABLES if t not in tables]
    if missing:
        print(f"\n❌ Missing tables: {', '.join(missing)}")
        return 1

    print("\n✅ Proctoring schema ready. Start the service with: python app.py")
    return 0


if __name__ == '__main__':
    sys.exit(main())
