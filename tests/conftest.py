import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from data.db import Database
from data.schema import initialize_schema
from data.user_repository import UserRepository
from data.invite_repository import InviteRepository
from data.route_repository import RouteRepository
from data.traffic_repository import TrafficRepository


@pytest.fixture
def db(tmp_path):
    """Fresh on-disk store with the full schema."""
    database = Database(str(tmp_path / "panel.db"))
    initialize_schema(database)
    yield database
    Database.close_all(database.db_file)


@pytest.fixture
def user_repo(db):
    return UserRepository(db)


@pytest.fixture
def invite_repo(db):
    return InviteRepository(db)


@pytest.fixture
def route_repo(db):
    return RouteRepository(db)


@pytest.fixture
def traffic_repo(db):
    return TrafficRepository(db)
