# test_staffing.py

import unittest
from datetime import date, timedelta

import staffing
from staffing import Officer, Shift, ShiftAssignment, StaffingCounts, StaffingMinimum, MinimumStaffingRule, MinimumStaffingRegistry


def make(rank='Officer', position='Officer', officer_id=1, **flags):
    return ShiftAssignment(officer=Officer(id=officer_id, full_name=f"Officer {officer_id}", rank=rank), shift_id=1, position=position, **flags)


class ClassifierTestCase(unittest.TestCase):
    """Headcount classification of scheduled officers."""

    def test_empty_input_counts_nobody(self):
        self.assertEqual(staffing.classify([]), StaffingCounts(0, 0, 0))

    def test_off_duty_is_never_counted(self):
        for rank in ('Officer', 'Sergeant', 'Probationary', 'Lieutenant'):
            for position in ('Officer', 'Supervisor', 'District 1A'):
                self.assertEqual(staffing.classify([make(rank, position, is_off=True)]), StaffingCounts(0, 0, 0))

    def test_supervisor_on_district_counts_as_officer(self):
        counts = staffing.classify([make('Sergeant', 'District 2B', is_off=False, has_pto=False)])
        self.assertEqual(counts, StaffingCounts(supervisor_count=0, officer_count=1, ppo_count=0))
        for position in ('Beat 4', '3C', 'Patrol North', 'City-Wide'):
            self.assertEqual(staffing.categorize(make('Lieutenant', position)), 'officer')

    def test_probationary_counts_as_ppo_only(self):
        counts = staffing.classify([make('Probationary', 'Officer', officer_id=1), make('Lieutenant', 'Supervisor', officer_id=2)])
        self.assertEqual(counts, StaffingCounts(supervisor_count=1, officer_count=0, ppo_count=1))
        self.assertEqual(staffing.categorize(make('PROBATIONARY', 'District 1A')), 'ppo')

    def test_ppo_abbreviation_is_a_ppo_rank(self):
        for rank in ('PPO', 'ppo officer', 'Officer (PPO)'):
            self.assertEqual(staffing.categorize(make(rank=rank)), 'ppo', rank)
            self.assertEqual(staffing.Rank.from_text(rank), staffing.Rank.PPO)
        self.assertEqual(staffing.categorize(make(rank='Support Officer')), 'officer')

    def test_full_day_pto_is_excluded_but_partial_pto_counts(self):
        self.assertIsNone(staffing.categorize(make(has_pto=True, pto_type='Vacation')))
        self.assertIsNone(staffing.categorize(make(has_pto=True, pto_type='SICK leave')))
        self.assertIsNone(staffing.categorize(make(has_pto=True, pto_type='')))
        self.assertEqual(staffing.categorize(make(has_pto=True, pto_type='vacation', pto_full_day=False)), 'officer')

    def test_special_assignments_are_excluded(self):
        for position in ('Other (Custom)', 'Other', 'other - K9 demo', 'Training', 'Court', 'Light Duty', 'Front Desk'):
            self.assertEqual(staffing.exclusion_reason(make(position=position)), 'special_assignment', position)
        self.assertEqual(staffing.categorize(make(position='Officer')), 'officer')

    def test_special_keywords_match_inside_longer_labels(self):
        for position in ('Administrative', 'Courthouse', 'Trainee Program', 'Desk Officer', 'Office Duty'):
            self.assertIsNone(staffing.categorize(make(position=position)), position)
        for position in ('Officer', 'District Officer', 'OFFICER', 'Patrol Officer 2'):
            self.assertEqual(staffing.categorize(make(position=position)), 'officer', position)

    def test_basic_rules_only_exclude_other_positions(self):
        self.assertEqual(staffing.categorize(make(position='Training'), staffing.BASIC_RULES), 'officer')
        self.assertIsNone(staffing.categorize(make(position='Other (Custom)'), staffing.BASIC_RULES))

    def test_unknown_rank_fails_open_to_officer(self):
        self.assertEqual(staffing.categorize(make(rank='')), 'officer')
        self.assertEqual(staffing.categorize(make(rank='Detective???')), 'officer')

    def test_partnerships(self):
        active = make(is_partnership=True, officer_id=1)
        suspended = make(is_partnership=True, partnership_suspended=True, officer_id=2)
        self.assertEqual(staffing.classify([active, suspended]), StaffingCounts(0, 1, 0))
        groups = staffing.group_assignments([active, suspended, make(officer_id=3)])
        self.assertEqual(groups['partnerships'], [active])
        self.assertEqual(groups['suspended_partnerships'], [suspended])
        self.assertEqual(len(groups['officers']), 1)
        keep_suspended = staffing.ExclusionRules(version=99, exclude_suspended_partnerships=False)
        self.assertEqual(staffing.classify([suspended], keep_suspended), StaffingCounts(0, 1, 0))

    def test_regular_and_overtime_split(self):
        assignments = [make('Sergeant', 'Supervisor', officer_id=1), make(officer_id=2, is_extra_shift=True), make(officer_id=3)]
        split = staffing.classify_split(assignments)
        self.assertEqual(split['regular'], StaffingCounts(1, 1, 0))
        self.assertEqual(split['overtime'], StaffingCounts(0, 1, 0))
        self.assertEqual(split['total'], staffing.classify(assignments))

    def test_rank_normalization(self):
        self.assertEqual(staffing.Rank.from_text('sgt. / Sergeant'), staffing.Rank.SERGEANT)
        self.assertEqual(staffing.Rank.from_text('Probationary Officer'), staffing.Rank.PPO)
        self.assertEqual(staffing.Rank.from_text('patrolman'), staffing.Rank.OFFICER)
        self.assertTrue(staffing.Rank.CAPTAIN.is_supervisor)
        self.assertFalse(staffing.Rank.PPO.is_supervisor)

    def test_position_categories(self):
        self.assertEqual(staffing.categorize_position('Riding with partner'), staffing.PositionCategory.RIDING_PARTNER)
        self.assertEqual(staffing.categorize_position('District 1A'), staffing.PositionCategory.PATROL)
        self.assertEqual(staffing.categorize_position('Supervisor'), staffing.PositionCategory.SUPERVISOR)
        self.assertEqual(staffing.categorize_position('Other (Custom)'), staffing.PositionCategory.SPECIAL)
        self.assertEqual(staffing.categorize_position('Officer'), staffing.PositionCategory.GENERAL)


class RegistryTestCase(unittest.TestCase):
    """Minimum staffing lookup."""

    def test_lookup_defaults_to_no_requirement(self):
        registry = MinimumStaffingRegistry([MinimumStaffingRule(1, 10, 4, 1)])
        self.assertEqual(registry.lookup(1, 10), StaffingMinimum(4, 1))
        self.assertEqual(registry.lookup(2, 10), StaffingMinimum(0, 0))
        self.assertFalse(registry.has_rule(2, 10))
        self.assertEqual(registry.missing_days(10), [0, 2, 3, 4, 5, 6])

    def test_duplicate_rule_is_rejected(self):
        with self.assertRaises(ValueError):
            MinimumStaffingRegistry([MinimumStaffingRule(1, 10, 4, 1), MinimumStaffingRule(1, 10, 2, 0)])
        with self.assertRaises(ValueError):
            MinimumStaffingRegistry([MinimumStaffingRule(7, 10, 4, 1)])

    def test_day_of_week_is_sunday_based(self):
        self.assertEqual(staffing.day_of_week(date(2025, 10, 5)), 0)  # Sunday
        self.assertEqual(staffing.day_of_week(date(2025, 10, 11)), 6)  # Saturday

    def test_smart_defaults(self):
        self.assertEqual(staffing.smart_defaults('Admin Day'), (0, 0))
        self.assertEqual(staffing.smart_defaults('Command Staff'), (0, 1))
        self.assertEqual(staffing.smart_defaults('Day Shift'), (8, 2))
        self.assertEqual(staffing.smart_defaults('Swing'), (6, 1))
        self.assertEqual(staffing.smart_defaults('Graveyard'), (4, 1))
        self.assertEqual(staffing.smart_defaults('Relief'), (0, 0))


class DetectorTestCase(unittest.TestCase):
    """Deficits and the multi-day understaffing scan."""

    def setUp(self):
        self.start = date(2025, 10, 5)
        self.shift = Shift(id=1, name='Day Shift', start_time='06:00', end_time='14:00')

    def test_deficit_is_never_negative(self):
        for current in range(6):
            for minimum in range(6):
                self.assertEqual(staffing.calculate_deficit(current, minimum), max(0, minimum - current))

    def test_zero_minimum_is_never_understaffed(self):
        for counts in (StaffingCounts(0, 0, 0), StaffingCounts(3, 0, 0), StaffingCounts(0, 5, 2), StaffingCounts(2, 9, 1)):
            report = staffing.check_shift(self.start, self.shift, counts, StaffingMinimum(0, 0))
            self.assertFalse(report.is_understaffed, counts)
            self.assertEqual((report.supervisors_needed, report.officers_needed), (0, 0))
            self.assertEqual(report.description, "No minimum requirements configured")

    def test_officer_shortfall(self):
        report = staffing.check_shift(self.start, self.shift, StaffingCounts(supervisor_count=1, officer_count=3), StaffingMinimum(minimum_officers=4, minimum_supervisors=1))
        self.assertTrue(report.officers_understaffed)
        self.assertFalse(report.supervisors_understaffed)
        self.assertEqual(report.description, "Need 1 officer(s)")
        self.assertEqual(report.position_type, "1 Officer(s)")
        self.assertEqual(report.severity, 'warning')

    def test_both_shortfalls(self):
        report = staffing.check_shift(self.start, self.shift, StaffingCounts(0, 1, 2), StaffingMinimum(4, 1))
        self.assertEqual(report.description, "Need 1 supervisor(s) and 3 officer(s)")
        self.assertEqual(report.position_type, "1 Supervisor(s), 3 Officer(s)")
        self.assertEqual(report.severity, 'danger')

    def test_failed_day_is_skipped(self):
        registry = MinimumStaffingRegistry([MinimumStaffingRule(day, 1, 2, 0) for day in range(7)])
        bad_day = self.start + timedelta(days=2)

        def fetch(on_date):
            if on_date == bad_day: raise RuntimeError("backend unavailable")
            return {1: [make()]}

        with self.assertLogs(level='WARNING'):
            reports = staffing.detect_understaffing(self.start, [self.shift], registry, fetch)
        expected = [(self.start + timedelta(days=i)).isoformat() for i in range(7) if i != 2]
        self.assertEqual([r.date for r in reports], expected)
        self.assertTrue(all(r.officers_needed == 1 for r in reports))

    def test_shifts_without_rules_are_not_reported(self):
        other = Shift(id=2, name='Night Shift')
        registry = MinimumStaffingRegistry([MinimumStaffingRule(0, 1, 2, 1)])
        reports = staffing.detect_understaffing(self.start, [self.shift, other], registry, lambda d: {}, days=7)
        self.assertEqual([(r.date, r.shift.id) for r in reports], [(self.start.isoformat(), 1)])

    def test_shift_filter_and_adequate_entries(self):
        other = Shift(id=2, name='Night Shift')
        registry = MinimumStaffingRegistry([MinimumStaffingRule(0, 1, 1, 0), MinimumStaffingRule(0, 2, 1, 0)])
        fetch = lambda d: {1: [make()], 2: [make()]}
        self.assertEqual(staffing.detect_understaffing(self.start, [self.shift, other], registry, fetch, days=1), [])
        reports = staffing.detect_understaffing(self.start, [self.shift, other], registry, fetch, days=1, shift_id=2, include_adequate=True)
        self.assertEqual(len(reports), 1)
        self.assertEqual(reports[0].shift.id, 2)
        self.assertEqual(reports[0].description, "Adequately staffed")
        self.assertEqual(reports[0].assigned_officers[0]['name'], 'Officer 1')


if __name__ == '__main__':
    unittest.main()
