import pytest

from caro.tests.helpers import ROOM_ID, build_store, two_player_session


@pytest.fixture
def harness(tmp_path):
    """A guest-seated store wired to in-memory collaborators, with one session served."""
    return build_store(tmp_path, sessions={ROOM_ID: two_player_session()})
