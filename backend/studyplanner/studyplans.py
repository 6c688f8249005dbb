# backend/studyplanner/studyplans.py
"""Read-only queries over the study plans written by the syllabus workflow."""

from typing import List, Optional

from sqlalchemy.orm import Session

from . import models
from .utils import parse_date

DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 100


class PlanAccessDenied(Exception):
    pass


def _owned_by(user_id) -> str:
    # the workflow stores user ids as strings
    return str(user_id)


def latest_plan(db: Session, user_id) -> Optional[models.StudyPlan]:
    return (
        db.query(models.StudyPlan)
        .filter(models.StudyPlan.user_id == _owned_by(user_id))
        .order_by(models.StudyPlan.saved_at.desc(), models.StudyPlan.id.desc())
        .first()
    )


def plan_history(db: Session, user_id, limit=None) -> List[models.StudyPlan]:
    """``limit`` may be the raw query string; anything unusable falls back to the default."""
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = DEFAULT_HISTORY_LIMIT
    if limit < 1:
        limit = DEFAULT_HISTORY_LIMIT
    limit = min(limit, MAX_HISTORY_LIMIT)
    return (
        db.query(models.StudyPlan)
        .filter(models.StudyPlan.user_id == _owned_by(user_id))
        .order_by(models.StudyPlan.saved_at.desc(), models.StudyPlan.id.desc())
        .limit(limit)
        .all()
    )


def plan_by_id(db: Session, user_id, plan_id: int) -> Optional[models.StudyPlan]:
    """Returns None if missing; raises PlanAccessDenied if another user owns it."""
    plan = db.query(models.StudyPlan).filter(models.StudyPlan.id == plan_id).first()
    if plan is None:
        return None
    if plan.user_id != _owned_by(user_id):
        raise PlanAccessDenied(plan_id)
    return plan


def calendar_entries(courses) -> List[dict]:
    """
    Flatten courses -> assessment entries into calendar records, sorted by due date
    ascending. Entries without a usable due date go last.
    """
    entries = []
    for course in courses or []:
        if not isinstance(course, dict):
            continue
        for entry in course.get("entries") or []:
            if not isinstance(entry, dict):
                continue
            entries.append(
                {
                    "course": course.get("course"),
                    "assessmentName": entry.get("assessmentName"),
                    "assessmentType": entry.get("assessmentType"),
                    "dueDate": entry.get("dueDate") or None,
                    "studyPeriod": entry.get("studyPeriod") or None,
                    "tasks": entry.get("tasks") or [],
                }
            )

    def sort_key(item):
        due = parse_date(item["dueDate"])
        return (due is None, due or 0)

    entries.sort(key=sort_key)
    return entries
