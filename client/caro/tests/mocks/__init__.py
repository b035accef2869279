from caro.tests.mocks.game_api import MockGameApi
from caro.tests.mocks.transport import MockTransport

__all__ = ["MockGameApi", "MockTransport"]
