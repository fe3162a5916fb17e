# Overview: Flask extension instances for database, migrations, and the clock.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .time_utils import Clock

db = SQLAlchemy()
migrate = Migrate()
clock = Clock()
