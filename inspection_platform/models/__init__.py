"""
Inspection Platform — model package.

Holds the shared Flask-SQLAlchemy handle. Model modules import ``db`` from
here; the application factory imports every model module so that
``db.create_all()`` sees the full metadata.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
