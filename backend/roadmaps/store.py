"""Roadmap store — roadmaps, subtasks and study plans in SQLite.

Every function takes an optional `db_path`; the default is the configured
database. Missing records raise NotFoundError.
"""

import json
import logging
from typing import Optional

from brain.errors import NotFoundError
from brain.schemas import Session, StudyPlan
from roadmaps.schemas import (
    Roadmap,
    RoadmapCreate,
    RoadmapUpdate,
    Subtask,
    SubtaskCreate,
    SubtaskStatus,
    SubtaskUpdate,
)
from server.database import get_db

logger = logging.getLogger(__name__)


def _row_to_subtask(row) -> Subtask:
    d = dict(row)
    return Subtask(
        id=d["id"],
        title=d["title"],
        description=d["description"] or "",
        estimated_hours=d["estimated_hours"] or 0.0,
        prerequisites=json.loads(d["prerequisites"] or "[]"),
        status=d["status"],
        deadline=d["deadline"],
    )


def _load_roadmap(db, roadmap_id: str) -> Roadmap:
    row = db.execute("SELECT * FROM roadmaps WHERE id = ?", (roadmap_id,)).fetchone()
    if not row:
        raise NotFoundError(f"Roadmap {roadmap_id} not found")
    d = dict(row)
    subtask_rows = db.execute(
        "SELECT * FROM subtasks WHERE roadmap_id = ? ORDER BY sort_order, rowid",
        (roadmap_id,),
    ).fetchall()
    return Roadmap(
        id=d["id"],
        title=d["title"],
        subject=d["subject"],
        description=d["description"] or "",
        difficulty=d["difficulty"],
        deadline=d["deadline"],
        tags=json.loads(d["tags"] or "[]"),
        subtasks=[_row_to_subtask(r) for r in subtask_rows],
    )


def _insert_subtask(db, roadmap_id: str, subtask: Subtask, sort_order: int):
    db.execute(
        """INSERT INTO subtasks (id, roadmap_id, sort_order, title, description, estimated_hours,
                                 prerequisites, status, completed, deadline)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            subtask.id, roadmap_id, sort_order, subtask.title, subtask.description,
            subtask.estimated_hours, json.dumps(subtask.prerequisites), subtask.status.value,
            int(subtask.completed), subtask.deadline.isoformat() if subtask.deadline else None,
        ),
    )


# ─── Roadmaps ─────────────────────────────────────────────

def create_roadmap(body: RoadmapCreate, db_path: Optional[str] = None) -> Roadmap:
    # validate everything before touching the database
    roadmap = Roadmap(
        title=body.title,
        subject=body.subject,
        description=body.description,
        difficulty=body.difficulty,
        deadline=body.deadline,
        tags=body.tags,
        subtasks=[Subtask(**s.model_dump()) for s in body.subtasks],
    )
    db = get_db(db_path)
    try:
        db.execute(
            """INSERT INTO roadmaps (id, title, subject, description, difficulty, deadline, tags)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                roadmap.id, roadmap.title, roadmap.subject, roadmap.description,
                roadmap.difficulty.value,
                roadmap.deadline.isoformat() if roadmap.deadline else None,
                json.dumps(roadmap.tags),
            ),
        )
        for i, st in enumerate(roadmap.subtasks):
            _insert_subtask(db, roadmap.id, st, i)
        db.commit()
    finally:
        db.close()
    logger.info("Created roadmap %s with %d subtasks", roadmap.id, len(roadmap.subtasks))
    return roadmap


def get_roadmap(roadmap_id: str, db_path: Optional[str] = None) -> Roadmap:
    db = get_db(db_path)
    try:
        return _load_roadmap(db, roadmap_id)
    finally:
        db.close()


def list_roadmaps(db_path: Optional[str] = None) -> list[Roadmap]:
    db = get_db(db_path)
    try:
        ids = [r["id"] for r in db.execute("SELECT id FROM roadmaps ORDER BY created_at, rowid").fetchall()]
        return [_load_roadmap(db, rid) for rid in ids]
    finally:
        db.close()


def update_roadmap(roadmap_id: str, body: RoadmapUpdate, db_path: Optional[str] = None) -> Roadmap:
    db = get_db(db_path)
    try:
        current = _load_roadmap(db, roadmap_id)
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        # re-validate the merged record so required fields stay non-empty
        merged = Roadmap(**{**current.model_dump(), **changes})

        updates = []
        values = []
        for column in ("title", "subject", "description"):
            if column in changes:
                updates.append(f"{column} = ?")
                values.append(getattr(merged, column))
        if "difficulty" in changes:
            updates.append("difficulty = ?")
            values.append(merged.difficulty.value)
        if "deadline" in changes:
            updates.append("deadline = ?")
            values.append(merged.deadline.isoformat())
        if "tags" in changes:
            updates.append("tags = ?")
            values.append(json.dumps(merged.tags))

        if updates:
            updates.append("updated_at = datetime('now')")
            values.append(roadmap_id)
            db.execute(f"UPDATE roadmaps SET {', '.join(updates)} WHERE id = ?", values)
            db.commit()
        return merged
    finally:
        db.close()


def delete_roadmap(roadmap_id: str, db_path: Optional[str] = None):
    db = get_db(db_path)
    try:
        cursor = db.execute("DELETE FROM roadmaps WHERE id = ?", (roadmap_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Roadmap {roadmap_id} not found")
        db.commit()
    finally:
        db.close()
    logger.info("Deleted roadmap %s", roadmap_id)


# ─── Subtasks ─────────────────────────────────────────────

def add_subtask(roadmap_id: str, body: SubtaskCreate, db_path: Optional[str] = None) -> Subtask:
    subtask = Subtask(**body.model_dump())
    db = get_db(db_path)
    try:
        _load_roadmap(db, roadmap_id)
        next_order = db.execute(
            "SELECT COALESCE(MAX(sort_order), -1) + 1 FROM subtasks WHERE roadmap_id = ?",
            (roadmap_id,),
        ).fetchone()[0]
        _insert_subtask(db, roadmap_id, subtask, next_order)
        db.execute("UPDATE roadmaps SET updated_at = datetime('now') WHERE id = ?", (roadmap_id,))
        db.commit()
    finally:
        db.close()
    return subtask


def update_subtask(
    roadmap_id: str,
    subtask_id: str,
    body: SubtaskUpdate,
    db_path: Optional[str] = None,
) -> Subtask:
    """Apply a partial update. `status` wins over `completed` when both are sent."""
    db = get_db(db_path)
    try:
        roadmap = _load_roadmap(db, roadmap_id)
        current = roadmap.get_subtask(subtask_id)
        if current is None:
            raise NotFoundError(f"Subtask {subtask_id} not found in roadmap {roadmap_id}")

        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        data = current.model_dump()
        data.update(changes)
        if "status" not in changes and "completed" in changes:
            data["status"] = SubtaskStatus.COMPLETED if changes["completed"] else (
                SubtaskStatus.NOT_STARTED if current.completed else current.status
            )
        subtask = Subtask(**data)

        db.execute(
            """UPDATE subtasks SET title = ?, description = ?, estimated_hours = ?, prerequisites = ?,
                                   status = ?, completed = ?, deadline = ?
               WHERE roadmap_id = ? AND id = ?""",
            (
                subtask.title, subtask.description, subtask.estimated_hours,
                json.dumps(subtask.prerequisites), subtask.status.value, int(subtask.completed),
                subtask.deadline.isoformat() if subtask.deadline else None,
                roadmap_id, subtask_id,
            ),
        )
        db.execute("UPDATE roadmaps SET updated_at = datetime('now') WHERE id = ?", (roadmap_id,))
        db.commit()
        return subtask
    finally:
        db.close()


def delete_subtask(roadmap_id: str, subtask_id: str, db_path: Optional[str] = None):
    db = get_db(db_path)
    try:
        cursor = db.execute(
            "DELETE FROM subtasks WHERE roadmap_id = ? AND id = ?", (roadmap_id, subtask_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Subtask {subtask_id} not found in roadmap {roadmap_id}")
        db.commit()
    finally:
        db.close()


# ─── Study plans ──────────────────────────────────────────

def save_study_plan(plan: StudyPlan, db_path: Optional[str] = None) -> StudyPlan:
    """Store `plan`, replacing any previous plan of the same roadmap."""
    db = get_db(db_path)
    try:
        _load_roadmap(db, plan.roadmap_id)
        db.execute("DELETE FROM study_plans WHERE roadmap_id = ?", (plan.roadmap_id,))
        db.execute(
            """INSERT INTO study_plans (id, roadmap_id, plan_type, hours_per_week, starting_date,
                                        source, deferred_hours, weekly_hours, sessions)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                plan.id, plan.roadmap_id, plan.plan_type.value, plan.hours_per_week,
                plan.starting_date.isoformat(), plan.source.value, plan.deferred_hours,
                json.dumps(plan.weekly_hours),
                json.dumps([s.model_dump(mode="json") for s in plan.sessions]),
            ),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    logger.info("Saved study plan %s (%d sessions) for roadmap %s",
                plan.id, len(plan.sessions), plan.roadmap_id)
    return plan


def get_study_plan(roadmap_id: str, db_path: Optional[str] = None) -> StudyPlan:
    db = get_db(db_path)
    try:
        row = db.execute("SELECT * FROM study_plans WHERE roadmap_id = ?", (roadmap_id,)).fetchone()
    finally:
        db.close()
    if not row:
        raise NotFoundError(f"No study plan for roadmap {roadmap_id}")
    d = dict(row)
    return StudyPlan(
        id=d["id"],
        roadmap_id=d["roadmap_id"],
        plan_type=d["plan_type"],
        hours_per_week=d["hours_per_week"],
        starting_date=d["starting_date"],
        source=d["source"],
        deferred_hours=d["deferred_hours"] or 0.0,
        weekly_hours=json.loads(d["weekly_hours"] or "[]"),
        sessions=[Session(**s) for s in json.loads(d["sessions"])],
    )


def delete_study_plan(roadmap_id: str, db_path: Optional[str] = None):
    db = get_db(db_path)
    try:
        cursor = db.execute("DELETE FROM study_plans WHERE roadmap_id = ?", (roadmap_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"No study plan for roadmap {roadmap_id}")
        db.commit()
    finally:
        db.close()
