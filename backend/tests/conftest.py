import os, sys, pytest
# Ensure the backend directory is on path so 'facilityops' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from facilityops import create_app, get_db
from facilityops.models.membership import Base
# Import all model modules to ensure tables are registered before create_all
import facilityops.models.issue  # noqa: F401
import facilityops.models.vendor_metrics  # noqa: F401
import facilityops.models.notification  # noqa: F401
import facilityops.models.audit  # noqa: F401


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({'DATABASE_URL': 'sqlite+pysqlite:///:memory:'})
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def client(app_context):
    return app_context.test_client()


@pytest.fixture()
def session(app_context):
    s = get_db()
    yield s
    # leave no half-finished transaction behind for the next test
    s.rollback()
