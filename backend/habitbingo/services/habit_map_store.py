"""Per-goal versioned habit map documents."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from habitbingo.db.models import HabitMapRecord
from habitbingo.services.habit_models import HabitMap, decode_habit_map_document

logger = logging.getLogger(__name__)


def load_habit_map(db: Session, goal: str) -> Optional[HabitMap]:
    record = db.get(HabitMapRecord, goal)
    if record is None:
        return None
    return decode_habit_map_document(goal, record.document or {})


def load_habit_maps(db: Session) -> Dict[str, HabitMap]:
    maps: Dict[str, HabitMap] = {}
    for record in db.scalars(select(HabitMapRecord)).all():
        maps[record.goal] = decode_habit_map_document(record.goal, record.document or {})
    return maps


def save_habit_map(db: Session, habit_map: HabitMap) -> HabitMapRecord:
    """Insert or replace the goal's document, bumping its version."""
    record = db.get(HabitMapRecord, habit_map.goal)
    document = habit_map.to_document()
    if record is None:
        record = HabitMapRecord(goal=habit_map.goal, version=1, source=habit_map.source, document=document)
        db.add(record)
    else:
        record.version = (record.version or 0) + 1
        record.source = habit_map.source
        record.document = document
    db.flush()
    logger.debug("Stored habit map version %s (%s)", record.version, habit_map.source)
    return record


def delete_habit_map(db: Session, goal: str) -> bool:
    record = db.get(HabitMapRecord, goal)
    if record is None:
        return False
    db.delete(record)
    db.flush()
    return True


def rename_habit_map(db: Session, old_goal: str, new_goal: str) -> Optional[HabitMap]:
    habit_map = load_habit_map(db, old_goal)
    if habit_map is None:
        return None
    delete_habit_map(db, old_goal)
    habit_map.goal = new_goal
    habit_map.touch()
    save_habit_map(db, habit_map)
    return habit_map


def habit_map_version(db: Session, goal: str) -> Optional[int]:
    record = db.get(HabitMapRecord, goal)
    return record.version if record else None
