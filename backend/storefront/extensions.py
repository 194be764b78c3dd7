# Overview: Flask extension instances for database and migrations.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def current_storefront():
    """The Storefront built by create_app for the running application."""
    return current_app.extensions["storefront"]
