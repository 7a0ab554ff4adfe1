"""
Membership grades and point accrual.

A buyer's grade is looked up from lifetime accumulated spend against a small
ordered threshold table; the grade fixes the rate at which paid amounts are
credited back as points.
"""
from typing import NamedTuple, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db, transaction
from models import User, UserPoint
from security import get_current_user

router = APIRouter(tags=["points"])


class GradePolicy(NamedTuple):
    grade: str
    min_amount: int
    rate_percent: int

    @property
    def rate(self) -> float:
        return self.rate_percent / 100


# ascending by min_amount
GRADE_POLICIES = (
    GradePolicy("Green", 0, 1),
    GradePolicy("Orange", 100_000, 2),
    GradePolicy("Red", 300_000, 3),
    GradePolicy("Black", 500_000, 5),
    GradePolicy("VIP", 1_000_000, 7),
)

LOWEST_GRADE = GRADE_POLICIES[0]
_POLICIES_BY_GRADE = {policy.grade: policy for policy in GRADE_POLICIES}


def policy_for(amount: int) -> GradePolicy:
    """Highest grade whose threshold is <= `amount`."""
    match = LOWEST_GRADE
    for policy in GRADE_POLICIES:
        if amount >= policy.min_amount:
            match = policy
    return match


def grade_for(amount: int) -> str:
    return policy_for(amount).grade


def policy_of(grade: str) -> GradePolicy:
    return _POLICIES_BY_GRADE.get(grade, LOWEST_GRADE)


def next_policy(amount: int) -> Optional[GradePolicy]:
    for policy in GRADE_POLICIES:
        if policy.min_amount > amount:
            return policy
    return None


def earned_points(amount: int, grade: str) -> int:
    """floor(amount * rate) without going through floats."""
    if amount <= 0:
        return 0
    return amount * policy_of(grade).rate_percent // 100


def ensure_user_point(db: Session, user_id: int) -> UserPoint:
    user_point = db.query(UserPoint).filter(UserPoint.user_id == user_id).one_or_none()
    if user_point is None:
        user_point = UserPoint(
            user_id=user_id, points=0, accumulated_amount=0,
            grade=LOWEST_GRADE.grade, point_rate=LOWEST_GRADE.rate,
        )
        db.add(user_point)
        db.flush()
    return user_point


def regrade(user_point: UserPoint) -> bool:
    """Sync grade and rate with the accumulated amount. True when the grade changed."""
    policy = policy_for(user_point.accumulated_amount)
    changed = user_point.grade != policy.grade
    user_point.grade = policy.grade
    user_point.point_rate = policy.rate
    return changed


def point_summary(user_point: UserPoint) -> dict:
    accumulated = user_point.accumulated_amount
    upcoming = next_policy(accumulated)
    if upcoming:
        next_grade = upcoming.grade
        remaining = upcoming.min_amount - accumulated
        progress = min(accumulated * 100 // upcoming.min_amount, 99)
    else:
        next_grade = None
        remaining = 0
        progress = 100
    return {
        "userSummary": {
            "currentPoint": user_point.points,
            "currentGrade": user_point.grade,
            "nextGrade": next_grade,
            "remainingPoint": remaining,
            "progressPercent": progress,
        }
    }


def grade_metadata() -> list:
    return [
        {"grade": p.grade, "minAmount": p.min_amount, "rate": p.rate_percent}
        for p in GRADE_POLICIES
    ]


# ========== ROUTES ==========

@router.get("/points/me")
@router.get("/users/me/point")
def get_my_point_info(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with transaction(db):
        user_point = ensure_user_point(db, user.id)
        summary = point_summary(user_point)
    return summary


@router.get("/metadata/grade")
def get_grade_metadata():
    return grade_metadata()
