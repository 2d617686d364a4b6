import pytest

from helpers import make_step, equator_route

from services.navigation.app.route import Coordinate, Route


@pytest.fixture()
def two_step_route() -> Route:
    a, b, c = Coordinate(0, 0), Coordinate(0, 0.001), Coordinate(0, 0.002)
    return Route.from_steps(
        [
            make_step(a, b, 20, "Head <b>east</b>"),
            make_step(b, c, 20, "Continue&nbsp;straight"),
        ]
    )


@pytest.fixture()
def route() -> Route:
    return equator_route()
