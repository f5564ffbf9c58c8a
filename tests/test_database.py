from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    StaffBase,
    assign_porter_to_department,
    create_department,
    create_porter,
    end_porter_assignment,
    list_departments,
    list_departments_operating_on,
    list_departments_requiring_shift_support,
    list_porters,
    set_porter_shift_group,
)
from errors import MissingDepartmentError, MissingPorterError  # noqa: E402


class StaffDataTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite:///:memory:", future=True)
        StaffBase.metadata.create_all(self.engine)
        self.session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)()

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_shift_fields_derived_from_group_name(self) -> None:
        porter = create_porter(self.session, "Nina", "regular", shift_group="  Night   Shift B ")
        self.assertEqual(porter.porter_category, "Regular")
        self.assertEqual(porter.shift_group, "Night Shift B")
        self.assertEqual((porter.shift_category, porter.group_label), ("night", "B"))

        updated = set_porter_shift_group(self.session, porter.id, "Day Shift A")
        self.assertEqual((updated.shift_category, updated.group_label), ("day", "A"))
        cleared = set_porter_shift_group(self.session, porter.id, None)
        self.assertIsNone(cleared.shift_category)
        self.assertIsNone(cleared.group_label)

    def test_rejects_unknown_porter_category(self) -> None:
        with self.assertRaises(ValueError):
            create_porter(self.session, "Zed", "Contractor")

    def test_department_rotation_pairing_and_order(self) -> None:
        pts = create_department(self.session, "PTS A", "shift_rotation")
        pharmacy = create_department(self.session, "Pharmacy", "Standard Hours", days_of_week=[1, 2, 3, 4, 5])
        self.assertEqual((pts.rotation_category, pts.group_label), ("day", "A"))
        self.assertIsNone(pharmacy.rotation_category)
        self.assertEqual(pharmacy.department_category, "standard_hours")
        self.assertEqual([row.name for row in list_departments(self.session)], ["PTS A", "Pharmacy"])

    def test_days_of_week_start_on_sunday(self) -> None:
        pharmacy = create_department(
            self.session,
            "Pharmacy",
            days_of_week=[5, 1, 9],
            start_time=datetime.time(8, 0),
            end_time=datetime.time(17, 0),
        )
        self.assertEqual(pharmacy.day_list, [1, 5])
        self.assertTrue(pharmacy.is_open_on(datetime.date(2025, 5, 26)))  # Monday
        self.assertFalse(pharmacy.is_open_on(datetime.date(2025, 6, 1)))  # Sunday
        self.assertEqual(pharmacy.schedule_label, "Mon, Fri 08:00-17:00")

    def test_operating_hours_window(self) -> None:
        monday = datetime.date(2025, 5, 26)
        sunday = datetime.date(2025, 6, 1)
        pharmacy = create_department(
            self.session,
            "Pharmacy",
            days_of_week=[1, 2, 3, 4, 5],
            start_time=datetime.time(8, 0),
            end_time=datetime.time(17, 0),
        )
        emergency = create_department(self.session, "A&E", "emergency_24h", is_24_hour=True)
        self.assertTrue(pharmacy.is_operating(monday))
        self.assertTrue(pharmacy.is_operating(monday, datetime.time(8, 0)))
        self.assertTrue(pharmacy.is_operating(monday, datetime.time(17, 0)))
        self.assertFalse(pharmacy.is_operating(monday, datetime.time(7, 59)))
        self.assertFalse(pharmacy.is_operating(monday, datetime.time(18, 30)))
        self.assertFalse(pharmacy.is_operating(sunday, datetime.time(12, 0)))
        self.assertTrue(emergency.is_operating(sunday, datetime.time(3, 0)))

        untimed = create_department(self.session, "Stores", days_of_week=[1])
        self.assertTrue(untimed.is_operating(monday))
        self.assertFalse(untimed.is_operating(monday, datetime.time(12, 0)))

        names = [row.name for row in list_departments_operating_on(self.session, monday, datetime.time(3, 0))]
        self.assertEqual(names, ["A&E"])
        names = [row.name for row in list_departments_operating_on(self.session, sunday)]
        self.assertEqual(names, ["A&E"])
        names = [row.name for row in list_departments_operating_on(self.session, monday)]
        self.assertEqual(names, ["Pharmacy", "A&E", "Stores"])

    def test_departments_requiring_shift_support(self) -> None:
        create_department(self.session, "Pharmacy")
        create_department(self.session, "A&E", "emergency_24h", is_24_hour=True, requires_shift_support=True)
        create_department(self.session, "Resus", "emergency_24h", is_24_hour=True, requires_shift_support=True)
        names = [row.name for row in list_departments_requiring_shift_support(self.session)]
        self.assertEqual(names, ["A&E", "Resus"])

    def test_porter_keeps_only_rota_fields(self) -> None:
        porter = create_porter(self.session, "Abe", "Regular", shift_group="Day Shift A")
        self.assertFalse(hasattr(porter, "contracted_hours"))
        self.assertFalse(hasattr(porter, "break_duration_minutes"))
        with self.assertRaises(TypeError):
            create_porter(self.session, "Bea", "Regular", contracted_hours="37.5")

    def test_assignment_requires_existing_rows(self) -> None:
        porter = create_porter(self.session, "Rory", "Relief")
        department = create_department(self.session, "A&E", "emergency_24h", is_24_hour=True)
        with self.assertRaises(MissingPorterError):
            assign_porter_to_department(self.session, 999, department.id)
        with self.assertRaises(MissingDepartmentError):
            assign_porter_to_department(self.session, porter.id, 999)
        first = assign_porter_to_department(self.session, porter.id, department.id)
        again = assign_porter_to_department(self.session, porter.id, department.id)
        self.assertEqual(first.id, again.id)
        self.assertEqual(department.schedule_label, "24 Hours")

    def test_end_assignment(self) -> None:
        porter = create_porter(self.session, "Rory", "Relief")
        department = create_department(self.session, "A&E", "emergency_24h")
        assignment = assign_porter_to_department(
            self.session, porter.id, department.id, start_date=datetime.date(2025, 5, 1)
        )
        ended = end_porter_assignment(self.session, assignment.id, datetime.date(2025, 5, 31))
        self.assertTrue(ended.is_in_effect(datetime.date(2025, 5, 31)))
        self.assertFalse(ended.is_in_effect(datetime.date(2025, 6, 1)))
        with self.assertRaises(ValueError):
            end_porter_assignment(self.session, assignment.id, datetime.date(2025, 4, 1))

    def test_list_active_porters(self) -> None:
        create_porter(self.session, "Bea", "Regular", is_active=False)
        create_porter(self.session, "Abe", "Regular")
        self.assertEqual([row.name for row in list_porters(self.session, only_active=True)], ["Abe"])


if __name__ == "__main__":
    unittest.main()
