import pytest

from conftest import order_body
from models import UserPoint
from points import GRADE_POLICIES, earned_points, grade_for, next_policy, point_summary, regrade


@pytest.mark.parametrize("amount, grade", [
    (0, "Green"),
    (99_999, "Green"),
    (100_000, "Orange"),
    (299_999, "Orange"),
    (300_000, "Red"),
    (500_000, "Black"),
    (999_999, "Black"),
    (1_000_000, "VIP"),
    (50_000_000, "VIP"),
])
def test_grade_thresholds(amount, grade):
    assert grade_for(amount) == grade


def test_grade_never_drops_as_spend_grows():
    ranks = [p.grade for p in GRADE_POLICIES]
    previous = 0
    for amount in range(0, 1_200_000, 12_345):
        rank = ranks.index(grade_for(amount))
        assert rank >= previous
        previous = rank


def test_earned_points_are_floored():
    assert earned_points(20_000, "Green") == 200
    assert earned_points(999, "Green") == 9
    assert earned_points(10_050, "Black") == 502
    assert earned_points(0, "VIP") == 0
    assert earned_points(-10, "VIP") == 0


def test_next_policy():
    assert next_policy(0).grade == "Orange"
    assert next_policy(100_000).grade == "Red"
    assert next_policy(1_000_000) is None


def test_regrade_reports_changes():
    user_point = UserPoint(points=0, accumulated_amount=150_000, grade="Green", point_rate=0.01)

    assert regrade(user_point) is True
    assert user_point.grade == "Orange"
    assert user_point.point_rate == 0.02
    assert regrade(user_point) is False


def test_point_summary_progress():
    summary = point_summary(UserPoint(points=300, accumulated_amount=50_000, grade="Green"))["userSummary"]
    assert summary == {
        "currentPoint": 300,
        "currentGrade": "Green",
        "nextGrade": "Orange",
        "remainingPoint": 50_000,
        "progressPercent": 50,
    }

    top = point_summary(UserPoint(points=0, accumulated_amount=2_000_000, grade="VIP"))["userSummary"]
    assert top["nextGrade"] is None
    assert top["progressPercent"] == 100


def test_point_routes(client, buyer, product):
    client.post("/api/purchase", json=order_body(product["id"], quantity=2), headers=buyer["headers"])

    for path in ("/points/me", "/users/me/point"):
        summary = client.get(path, headers=buyer["headers"]).json()["userSummary"]
        assert summary["currentPoint"] == 200
        assert summary["currentGrade"] == "Green"
        assert summary["remainingPoint"] == 80_000


def test_order_crossing_threshold_promotes_buyer(client, db, buyer, make_product):
    product = make_product(name="Coat", price=120_000)

    client.post("/api/purchase", json=order_body(product["id"]), headers=buyer["headers"])

    point = db.query(UserPoint).filter_by(user_id=buyer["user"]["id"]).one()
    assert point.grade == "Orange"
    # accrual uses the grade held before the order
    assert point.points == 1200


def test_grade_metadata(client):
    grades = client.get("/metadata/grade").json()
    assert [g["grade"] for g in grades] == ["Green", "Orange", "Red", "Black", "VIP"]
    assert grades[1] == {"grade": "Orange", "minAmount": 100_000, "rate": 2}
