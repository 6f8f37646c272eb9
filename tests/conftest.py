import json

import pytest

from roadmaps.schemas import Roadmap, Subtask


class FakeOracle:
    """Stands in for OracleClient: returns canned replies or raises."""

    def __init__(self, reply=None, error=None, available=True):
        self.reply = reply
        self.error = error
        self.available = available
        self.calls = []

    async def complete(self, prompt, system="", max_tokens=None):
        self.calls.append({"prompt": prompt, "system": system})
        if self.error is not None:
            raise self.error
        if isinstance(self.reply, (list, dict)):
            return json.dumps(self.reply)
        return self.reply


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    import server.database as database

    path = str(tmp_path / "pathflow.db")
    monkeypatch.setattr(database, "DB_PATH", path)
    database.init_db()
    return path


@pytest.fixture
def react_roadmap():
    return Roadmap(
        id="react",
        title="Learn React",
        subject="Web Development",
        subtasks=[
            Subtask(id="js", title="JavaScript fundamentals", estimated_hours=4),
            Subtask(id="jsx", title="JSX and components", estimated_hours=3, prerequisites=["js"]),
            Subtask(id="state", title="State and props", estimated_hours=3, prerequisites=["JSX and components"]),
            Subtask(id="hooks", title="Hooks", estimated_hours=5, prerequisites=["state"]),
            Subtask(id="router", title="Routing", estimated_hours=2, prerequisites=["jsx"]),
            Subtask(id="project", title="Capstone project", estimated_hours=8, prerequisites=["hooks", "router"]),
        ],
    )


@pytest.fixture
def fake_oracle():
    return FakeOracle
