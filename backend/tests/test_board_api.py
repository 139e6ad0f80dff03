from __future__ import annotations

import random

import pytest
from fastapi.testclient import TestClient

from habitbingo.services.state_owner import HabitBingoState, get_state_owner


@pytest.fixture()
def client(session_factory):
    from habitbingo.main import app

    owner = HabitBingoState(session_factory, rng=random.Random(31))
    app.dependency_overrides[get_state_owner] = lambda: owner
    with TestClient(app) as test_client:
        test_client.post("/goals", json={"text": "stretching"})
        yield test_client, owner
    app.dependency_overrides.clear()


def _cells(test_client):
    return test_client.get("/board").json()["board"]["cells"]


def test_board_is_filled_after_goal_registration(client):
    test_client, _ = client

    body = test_client.get("/board").json()

    assert body["board"]["size"] == 3
    assert len(body["board"]["cells"]) == 9
    assert all(cell["title"] for cell in body["board"]["cells"])
    assert body["coins"] == 0


def test_complete_cell_awards_coins(client):
    test_client, _ = client
    cell = _cells(test_client)[0]

    response = test_client.post(f"/board/cells/{cell['id']}/complete")
    repeat = test_client.post(f"/board/cells/{cell['id']}/complete")

    assert response.status_code == 200
    assert response.json()["reward"]["coins"] >= 1
    assert repeat.json()["already_done"] is True
    assert repeat.json()["reward"]["coins"] == 0


def test_completing_a_row_pays_line_bonus(client):
    test_client, _ = client
    cells = _cells(test_client)

    responses = [test_client.post(f"/board/cells/{cell['id']}/complete").json() for cell in cells[:3]]

    assert responses[-1]["reward"]["new_lines"] == 1
    assert responses[-1]["board"]["rewarded_line_ids"] == [0]


def test_unknown_cell_returns_404(client):
    test_client, _ = client

    assert test_client.post("/board/cells/nope/complete").status_code == 404
    assert test_client.post("/board/cells/nope/block").status_code == 404


def test_skip_without_ticket_conflicts(client):
    test_client, _ = client
    cell = _cells(test_client)[0]

    response = test_client.post(f"/board/cells/{cell['id']}/skip")

    assert response.status_code == 409


def test_refresh_keeps_completed_cells(client):
    test_client, _ = client
    cell = _cells(test_client)[4]
    test_client.post(f"/board/cells/{cell['id']}/complete")

    response = test_client.post("/board/refresh")

    assert response.status_code == 200
    assert response.json()["refreshed"] is True
    assert response.json()["board"]["cells"][4]["id"] == cell["id"]


def test_board_size_validation_and_change(client):
    test_client, _ = client

    assert test_client.put("/board/size", json={"size": 7}).status_code == 422

    response = test_client.put("/board/size", json={"size": 4})

    assert response.status_code == 200
    assert len(response.json()["board"]["cells"]) == 16


def test_blocked_topics_round_trip(client):
    test_client, _ = client

    response = test_client.put("/blocked-topics", json={"topics": ["coffee", " coffee ", ""]})

    assert response.status_code == 200
    assert response.json()["topics"] == ["coffee"]


def test_block_cell_removes_its_title(client):
    test_client, _ = client
    cell = _cells(test_client)[2]

    response = test_client.post(f"/board/cells/{cell['id']}/block")

    assert response.status_code == 200
    titles = [item["title"] for item in response.json()["board"]["cells"]]
    assert cell["title"] not in titles
