import pytest

from dynprop import InMemoryTreeStore, TreePropertySource

PROPERTIES_LOCATION = "/zookeeper/p"


@pytest.fixture
def store():
    return InMemoryTreeStore()


@pytest.fixture
def source(store):
    source = TreePropertySource(store, PROPERTIES_LOCATION, read_timeout=5.0)
    yield source
    source.close()
