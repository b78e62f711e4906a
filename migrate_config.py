"""
Database migrations for the proctoring ledger tables
Initialize with: flask --app app:create_app db init
Create migration: flask --app app:create_app db migrate -m "description"
Apply migration: flask --app app:create_app db upgrade
"""
from flask_migrate import Migrate
from extensions import db

migrate = Migrate()


def init_migrate(app):
    """Attach Flask-Migrate; SQLite needs batch mode for ALTER TABLE"""
    uri = app.config.get('SQLALCHEMY_DATABASE_URI') or ''
    migrate.init_app(app, db, compare_type=True, render_as_batch=uri.startswith('sqlite'))
    return migrate
