from __future__ import annotations

from types import SimpleNamespace

import pytest

from schooldb import entitlements
from schooldb.errors import AuthorizationError
from schooldb.apps.roster import models as roster_models
from schooldb.apps.schools import models as school_models


def _create_school(db, *, plan_type="starter", status="active", slug="alpha"):
    school = school_models.School(
        name="Alpha Primary",
        slug=slug,
        subscription_status=status,
        plan_type=plan_type,
    )
    db.add(school)
    db.commit()
    return school


def _add_pupils(db, school_id, count, *, is_active=True):
    for index in range(count):
        db.add(
            roster_models.Pupil(
                school_id=school_id,
                first_name=f"Pupil{index}",
                last_name="Test",
                is_active=is_active,
            )
        )
    db.commit()


def _user(school_id, role=school_models.UserRole.SCHOOL_ADMIN):
    return SimpleNamespace(id="user-1", school_id=school_id, role=role, is_active=True)


def test_ensure_capacity_blocks_at_plan_limit(db_session):
    school = _create_school(db_session)
    _add_pupils(db_session, school.id, 100)

    with pytest.raises(AuthorizationError) as exc:
        entitlements.ensure_capacity(db_session, school.id, "pupils")

    error = exc.value
    assert error.status_code == 403
    assert error.code == "PLAN_LIMIT_REACHED"
    assert error.details == {"entity": "pupils", "current": 100, "limit": 100, "plan": "starter"}
    assert "(100)" in error.message and "Starter plan" in error.message


def test_ensure_capacity_ignores_inactive_records(db_session):
    school = _create_school(db_session)
    _add_pupils(db_session, school.id, 99)
    _add_pupils(db_session, school.id, 20, is_active=False)

    entitlements.ensure_capacity(db_session, school.id, "pupils")


def test_ensure_capacity_unlimited_skips_counting(db_session, monkeypatch):
    school = _create_school(db_session, plan_type="standard")

    def _fail(*args, **kwargs):
        raise AssertionError("unlimited kinds must not be counted")

    monkeypatch.setattr(entitlements.school_services, "count_active", _fail)
    entitlements.ensure_capacity(db_session, school.id, "teachers")


def test_ensure_feature_names_the_minimum_plan(db_session):
    school = _create_school(db_session, plan_type="standard")

    entitlements.ensure_feature(db_session, school.id, "excel_export")
    with pytest.raises(AuthorizationError) as exc:
        entitlements.ensure_feature(db_session, school.id, "api_access")

    assert exc.value.code == "FEATURE_NOT_AVAILABLE"
    assert exc.value.details == {"feature": "api_access", "plan": "standard", "required_plan": "pro"}
    assert "Upgrade to Pro" in exc.value.message


def test_require_feature_dependency(db_session):
    school = _create_school(db_session)
    dependency = entitlements.require_feature("excel_export")

    with pytest.raises(AuthorizationError):
        dependency(current_user=_user(school.id), db=db_session)

    operator = SimpleNamespace(id="op", school_id=None, role=school_models.UserRole.SUPER_ADMIN, is_active=True)
    assert dependency(current_user=operator, db=db_session) is operator


def test_require_capacity_dependency(db_session):
    school = _create_school(db_session)
    dependency = entitlements.require_capacity("classes")
    user = _user(school.id)

    assert dependency(current_user=user, db=db_session) is user
    for index in range(5):
        db_session.add(roster_models.SchoolClass(school_id=school.id, name=f"P{index + 1}"))
    db_session.commit()

    with pytest.raises(AuthorizationError) as exc:
        dependency(current_user=user, db=db_session)
    assert exc.value.details["limit"] == 5


def test_factories_reject_unknown_names():
    with pytest.raises(ValueError):
        entitlements.require_feature("teleportation")
    with pytest.raises(ValueError):
        entitlements.require_capacity("buses")


def test_user_without_school_is_rejected(db_session):
    dependency = entitlements.require_feature("pdf_export")
    with pytest.raises(AuthorizationError) as exc:
        dependency(current_user=_user(None), db=db_session)
    assert exc.value.code == "NO_SCHOOL"
