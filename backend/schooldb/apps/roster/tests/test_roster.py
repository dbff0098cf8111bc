from __future__ import annotations

from datetime import date

import pytest

from schooldb.errors import AuthorizationError, ValidationError
from schooldb.apps.roster import schemas, services
from schooldb.apps.schools import models as school_models
from schooldb.apps.schools import services as school_services


def _create_school(db, slug="alpha", plan_type="starter"):
    school = school_models.School(name="Alpha Primary", slug=slug, subscription_status="active", plan_type=plan_type)
    db.add(school)
    db.commit()
    return school


def test_classes_are_listed_per_school(db_session):
    school = _create_school(db_session)
    other = _create_school(db_session, slug="beta")
    services.create_class(db_session, school_id=school.id, data=schemas.SchoolClassCreate(name="P2"))
    services.create_class(db_session, school_id=school.id, data=schemas.SchoolClassCreate(name="P1", stream="East"))
    services.create_class(db_session, school_id=other.id, data=schemas.SchoolClassCreate(name="P7"))

    assert [c.name for c in services.list_classes(db_session, school_id=school.id)] == ["P1", "P2"]
    assert school_services.count_active(db_session, school.id, "classes") == 2


def test_pupil_must_belong_to_a_class_of_the_same_school(db_session):
    school = _create_school(db_session)
    other = _create_school(db_session, slug="beta")
    foreign = services.create_class(db_session, school_id=other.id, data=schemas.SchoolClassCreate(name="P3"))

    with pytest.raises(ValidationError):
        services.create_pupil(
            db_session,
            school_id=school.id,
            data=schemas.PupilCreate(first_name="Amina", last_name="Okello", class_id=foreign.id),
        )


def test_pupils_filter_and_order(db_session):
    school = _create_school(db_session)
    p1 = services.create_class(db_session, school_id=school.id, data=schemas.SchoolClassCreate(name="P1"))
    for first, last, class_id in [("Zed", "Achieng", p1.id), ("Amina", "Okello", p1.id), ("Brian", "Mugisha", None)]:
        services.create_pupil(
            db_session,
            school_id=school.id,
            data=schemas.PupilCreate(first_name=first, last_name=last, class_id=class_id, date_of_birth=date(2018, 3, 1)),
        )

    everyone = services.list_pupils(db_session, school_id=school.id)
    assert [p.last_name for p in everyone] == ["Achieng", "Mugisha", "Okello"]
    in_class = services.list_pupils(db_session, school_id=school.id, class_id=p1.id)
    assert {p.first_name for p in in_class} == {"Zed", "Amina"}
    assert len(services.list_pupils(db_session, school_id=school.id, limit=1, offset=1)) == 1


def test_enforced_pupil_limit(db_session):
    school = _create_school(db_session)
    for index in range(100):
        services.create_pupil(
            db_session,
            school_id=school.id,
            data=schemas.PupilCreate(first_name=f"Pupil{index}", last_name="Test"),
        )

    with pytest.raises(AuthorizationError) as exc:
        services.create_pupil(
            db_session,
            school_id=school.id,
            data=schemas.PupilCreate(first_name="One", last_name="Toomany"),
            enforce_limit=True,
        )
    assert exc.value.code == "PLAN_LIMIT_REACHED"

    school_services.update_snapshot(db_session, school.id, {"plan_type": "standard"})
    services.create_pupil(
        db_session,
        school_id=school.id,
        data=schemas.PupilCreate(first_name="One", last_name="More"),
        enforce_limit=True,
    )
    assert school_services.count_active(db_session, school.id, "pupils") == 101
