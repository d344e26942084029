import pytest
from PySide6.QtCore import QCoreApplication


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    # QTimer and queued signals need an application object.
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app
