# staffing.py
"""Shift staffing counts, minimum staffing rules and understaffing detection."""

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional

# --- Vocabularies ---
SUPERVISOR_RANK_KEYWORDS = ('sergeant', 'lieutenant', 'captain', 'chief', 'commander', 'supervisor')
PPO_RANK_KEYWORDS = ('probationary',)
PPO_RANK_ABBREVIATIONS = ('ppo',)
RIDING_PARTNER_KEYWORDS = ('riding with', 'riding partner', 'emergency partner')
DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')

# Checked in order; first keyword hit wins.
SMART_DEFAULTS = (
    (('admin',), (0, 0)),
    (('supervisor', 'command'), (0, 1)),
    (('day', 'morning'), (8, 2)),
    (('evening', 'swing'), (6, 1)),
    (('night', 'graveyard'), (4, 1)),
)


class Rank(Enum):
    OFFICER = 'Officer'
    PPO = 'Probationary'
    SERGEANT = 'Sergeant'
    LIEUTENANT = 'Lieutenant'
    CAPTAIN = 'Captain'
    CHIEF = 'Chief'
    COMMANDER = 'Commander'
    SUPERVISOR = 'Supervisor'

    @classmethod
    def from_text(cls, text):
        """Normalize a typed-in rank. Anything unrecognized is an Officer."""
        lowered = (text or '').strip().lower()
        for rank in cls:
            if rank.value.lower() == lowered: return rank
        for keyword in SUPERVISOR_RANK_KEYWORDS:
            if keyword in lowered: return cls(keyword.capitalize())
        if is_ppo_rank(lowered): return cls.PPO
        return cls.OFFICER

    @property
    def is_supervisor(self):
        return self.value.lower() in SUPERVISOR_RANK_KEYWORDS


class PositionCategory(Enum):
    PATROL = 'patrol'
    SUPERVISOR = 'supervisor'
    SPECIAL = 'special'
    RIDING_PARTNER = 'riding_partner'
    GENERAL = 'general'


@dataclass(frozen=True)
class ExclusionRules:
    """Versioned table of what keeps a scheduled officer out of the headcount."""
    version: int
    excluded_pto_types: tuple = ('vacation', 'holiday', 'sick', 'comp', 'other')
    special_prefixes: tuple = ('other',)
    special_keywords: tuple = ()
    # Removed from a position before keyword matching, so "Officer" never hits "office".
    special_exempt_terms: tuple = ('officer',)
    district_keywords: tuple = ('district', 'beat', 'patrol', 'city-wide')
    exclude_suspended_partnerships: bool = True


BASIC_RULES = ExclusionRules(version=1)
DEFAULT_RULES = ExclusionRules(
    version=2,
    special_keywords=('training', 'trainee', 'court', 'detail', 'admin', 'office', 'desk', 'light duty', 'modified duty'),
)
RULES_BY_VERSION = {rules.version: rules for rules in (BASIC_RULES, DEFAULT_RULES)}


# --- Data ---
@dataclass(frozen=True)
class Officer:
    id: int
    full_name: str
    rank: str = 'Officer'
    badge_number: str = ''


@dataclass(frozen=True)
class Shift:
    id: int
    name: str
    start_time: str = ''
    end_time: str = ''

    def to_dict(self):
        return {"id": self.id, "name": self.name, "start_time": self.start_time, "end_time": self.end_time}


@dataclass
class ShiftAssignment:
    officer: Officer
    shift_id: int
    date: Optional[str] = None
    position: str = 'Officer'
    unit_number: str = ''
    is_off: bool = False
    has_pto: bool = False
    pto_type: str = ''
    pto_full_day: bool = True
    is_extra_shift: bool = False
    is_partnership: bool = False
    partnership_suspended: bool = False
    partner_officer_id: Optional[int] = None

    @property
    def active_partnership(self):
        return self.is_partnership and not self.partnership_suspended

    def to_dict(self):
        return {
            "officer_id": self.officer.id, "name": self.officer.full_name, "rank": self.officer.rank,
            "badge_number": self.officer.badge_number, "shift_id": self.shift_id, "date": self.date,
            "position": self.position, "unit_number": self.unit_number, "is_off": self.is_off,
            "has_pto": self.has_pto, "pto_type": self.pto_type, "pto_full_day": self.pto_full_day,
            "is_extra_shift": self.is_extra_shift, "is_partnership": self.is_partnership,
            "partnership_suspended": self.partnership_suspended, "partner_officer_id": self.partner_officer_id,
        }


@dataclass
class StaffingCounts:
    supervisor_count: int = 0
    officer_count: int = 0
    ppo_count: int = 0

    def __add__(self, other):
        return StaffingCounts(self.supervisor_count + other.supervisor_count,
                              self.officer_count + other.officer_count,
                              self.ppo_count + other.ppo_count)

    def to_dict(self):
        return {"supervisorCount": self.supervisor_count, "officerCount": self.officer_count, "ppoCount": self.ppo_count}


# --- Classifier ---
def is_supervisor_rank(rank):
    lowered = (rank or '').lower()
    return any(keyword in lowered for keyword in SUPERVISOR_RANK_KEYWORDS)


def is_ppo_rank(rank):
    """'Probationary' anywhere in the rank, or a standalone abbreviation such as 'PPO'."""
    lowered = (rank or '').lower()
    if any(keyword in lowered for keyword in PPO_RANK_KEYWORDS): return True
    return any(token in PPO_RANK_ABBREVIATIONS for token in re.findall(r'[a-z]+', lowered))


def is_district_position(position, rules=DEFAULT_RULES):
    lowered = (position or '').strip().lower()
    if not lowered: return False
    return lowered[0].isdigit() or any(keyword in lowered for keyword in rules.district_keywords)


def is_riding_partner_position(position):
    lowered = (position or '').lower()
    return any(keyword in lowered for keyword in RIDING_PARTNER_KEYWORDS)


def is_special_assignment(position, rules=DEFAULT_RULES):
    lowered = (position or '').strip().lower()
    if not lowered: return False
    if lowered.startswith(rules.special_prefixes): return True
    for term in rules.special_exempt_terms:
        lowered = lowered.replace(term, ' ')
    return any(keyword in lowered for keyword in rules.special_keywords)


def categorize_position(position, rules=DEFAULT_RULES):
    if is_riding_partner_position(position): return PositionCategory.RIDING_PARTNER
    if is_special_assignment(position, rules): return PositionCategory.SPECIAL
    if is_district_position(position, rules): return PositionCategory.PATROL
    if 'supervisor' in (position or '').lower(): return PositionCategory.SUPERVISOR
    return PositionCategory.GENERAL


def has_excluded_pto(assignment, rules=DEFAULT_RULES):
    if not assignment.has_pto or not assignment.pto_full_day: return False
    pto_type = (assignment.pto_type or '').lower().strip()
    if not pto_type: return True
    return any(excluded in pto_type for excluded in rules.excluded_pto_types)


def exclusion_reason(assignment, rules=DEFAULT_RULES):
    """Return why an assignment is left out of every count, or None if it counts."""
    if assignment.is_off: return 'off'
    if has_excluded_pto(assignment, rules): return 'pto'
    if rules.exclude_suspended_partnerships and assignment.is_partnership and assignment.partnership_suspended:
        return 'suspended_partnership'
    if is_special_assignment(assignment.position, rules): return 'special_assignment'
    return None


def categorize(assignment, rules=DEFAULT_RULES):
    """Bucket for a single assignment: 'supervisor', 'officer', 'ppo' or None when excluded.

    A supervisor working a district or beat is credited as an officer.
    Unrecognized ranks fall through to 'officer' so nobody drops out of
    the headcount because of a typo.
    """
    if exclusion_reason(assignment, rules): return None
    rank = assignment.officer.rank
    if is_supervisor_rank(rank):
        return 'officer' if is_district_position(assignment.position, rules) else 'supervisor'
    if is_ppo_rank(rank): return 'ppo'
    return 'officer'


def classify(assignments, rules=DEFAULT_RULES, extra_shift=None):
    """Count supervisors, officers and PPOs.

    extra_shift=None counts everyone, True only overtime, False only regular.
    """
    counts = StaffingCounts()
    for assignment in assignments:
        if extra_shift is not None and bool(assignment.is_extra_shift) != extra_shift: continue
        bucket = categorize(assignment, rules)
        if bucket == 'supervisor': counts.supervisor_count += 1
        elif bucket == 'officer': counts.officer_count += 1
        elif bucket == 'ppo': counts.ppo_count += 1
    return counts


def classify_split(assignments, rules=DEFAULT_RULES):
    regular = classify(assignments, rules, extra_shift=False)
    overtime = classify(assignments, rules, extra_shift=True)
    return {"regular": regular, "overtime": overtime, "total": regular + overtime}


def group_assignments(assignments, rules=DEFAULT_RULES):
    """Split assignments into the sections a daily roster is displayed in."""
    groups = {key: [] for key in ('supervisors', 'officers', 'ppos', 'partnerships',
                                  'suspended_partnerships', 'special_assignments', 'pto', 'off')}
    for assignment in assignments:
        reason = exclusion_reason(assignment, rules)
        if reason == 'off': groups['off'].append(assignment)
        elif reason == 'pto': groups['pto'].append(assignment)
        elif reason == 'special_assignment': groups['special_assignments'].append(assignment)
        elif assignment.is_partnership and assignment.partnership_suspended: groups['suspended_partnerships'].append(assignment)
        elif assignment.active_partnership: groups['partnerships'].append(assignment)
        else: groups[categorize(assignment, rules) + 's'].append(assignment)
    return groups


# --- Minimum staffing registry ---
@dataclass(frozen=True)
class StaffingMinimum:
    minimum_officers: int = 0
    minimum_supervisors: int = 0

    @property
    def has_requirements(self):
        return self.minimum_officers > 0 or self.minimum_supervisors > 0

    def summary(self):
        if not self.has_requirements: return "No minimum"
        parts = []
        if self.minimum_supervisors > 0: parts.append(f"{self.minimum_supervisors} sup")
        if self.minimum_officers > 0: parts.append(f"{self.minimum_officers} off")
        return ", ".join(parts)


@dataclass(frozen=True)
class MinimumStaffingRule:
    day_of_week: int
    shift_id: int
    minimum_officers: int = 0
    minimum_supervisors: int = 0


class MinimumStaffingRegistry:
    """Read-only (day of week, shift) -> minimum staffing lookup. Sunday is day 0."""

    def __init__(self, rules=()):
        self._rules = {}
        for rule in rules:
            if not 0 <= rule.day_of_week <= 6:
                raise ValueError(f"day_of_week must be between 0 and 6, got {rule.day_of_week}")
            key = (rule.day_of_week, rule.shift_id)
            if key in self._rules:
                raise ValueError(f"Duplicate minimum staffing rule for {DAY_NAMES[rule.day_of_week]}, shift {rule.shift_id}")
            self._rules[key] = StaffingMinimum(rule.minimum_officers, rule.minimum_supervisors)

    def __len__(self):
        return len(self._rules)

    def has_rule(self, day, shift_id):
        return (day, shift_id) in self._rules

    def lookup(self, day, shift_id):
        return self._rules.get((day, shift_id), StaffingMinimum())

    def missing_days(self, shift_id):
        return [day for day in range(7) if (day, shift_id) not in self._rules]


def day_of_week(on_date):
    return (on_date.weekday() + 1) % 7


def smart_defaults(shift_name):
    """Starting (officers, supervisors) minimums for a new shift, guessed from its name."""
    lowered = (shift_name or '').lower()
    for keywords, defaults in SMART_DEFAULTS:
        if any(keyword in lowered for keyword in keywords): return defaults
    return (0, 0)


# --- Understaffing detector ---
def calculate_deficit(current, minimum):
    return max(0, minimum - current)


def is_understaffed(current, minimum):
    return minimum > 0 and current < minimum


def describe_position_type(supervisors_needed, officers_needed):
    parts = []
    if supervisors_needed > 0: parts.append(f"{supervisors_needed} Supervisor(s)")
    if officers_needed > 0: parts.append(f"{officers_needed} Officer(s)")
    return ", ".join(parts)


def describe_deficit(supervisors_needed, officers_needed, minimum):
    if not minimum.has_requirements: return "No minimum requirements configured"
    if supervisors_needed > 0 and officers_needed > 0:
        return f"Need {supervisors_needed} supervisor(s) and {officers_needed} officer(s)"
    if supervisors_needed > 0: return f"Need {supervisors_needed} supervisor(s)"
    if officers_needed > 0: return f"Need {officers_needed} officer(s)"
    return "Adequately staffed"


def staffing_severity(supervisors_needed, officers_needed):
    total = supervisors_needed + officers_needed
    if total >= 3: return 'danger'
    if total > 0: return 'warning'
    return 'none'


@dataclass
class DeficitReport:
    date: str
    shift: Shift
    day_of_week: int
    current_supervisors: int
    current_officers: int
    current_ppos: int
    minimum_supervisors: int
    minimum_officers: int
    supervisors_understaffed: bool
    officers_understaffed: bool
    supervisors_needed: int
    officers_needed: int
    position_type: str
    description: str
    severity: str
    assigned_officers: list = field(default_factory=list)

    @property
    def is_understaffed(self):
        return self.supervisors_understaffed or self.officers_understaffed

    def to_dict(self):
        return {
            "date": self.date, "shift": self.shift.to_dict(), "day_of_week": self.day_of_week,
            "current_supervisors": self.current_supervisors, "current_officers": self.current_officers,
            "current_ppos": self.current_ppos, "min_supervisors": self.minimum_supervisors,
            "min_officers": self.minimum_officers, "is_understaffed": self.is_understaffed,
            "isSupervisorsUnderstaffed": self.supervisors_understaffed,
            "isOfficersUnderstaffed": self.officers_understaffed,
            "supervisors_needed": self.supervisors_needed, "officers_needed": self.officers_needed,
            "position_type": self.position_type, "description": self.description,
            "severity": self.severity, "assigned_officers": self.assigned_officers,
        }


def check_shift(on_date, shift, counts, minimum):
    supervisors_needed = calculate_deficit(counts.supervisor_count, minimum.minimum_supervisors) if minimum.minimum_supervisors > 0 else 0
    officers_needed = calculate_deficit(counts.officer_count, minimum.minimum_officers) if minimum.minimum_officers > 0 else 0
    return DeficitReport(
        date=on_date.isoformat(), shift=shift, day_of_week=day_of_week(on_date),
        current_supervisors=counts.supervisor_count, current_officers=counts.officer_count,
        current_ppos=counts.ppo_count, minimum_supervisors=minimum.minimum_supervisors,
        minimum_officers=minimum.minimum_officers,
        supervisors_understaffed=is_understaffed(counts.supervisor_count, minimum.minimum_supervisors),
        officers_understaffed=is_understaffed(counts.officer_count, minimum.minimum_officers),
        supervisors_needed=supervisors_needed, officers_needed=officers_needed,
        position_type=describe_position_type(supervisors_needed, officers_needed),
        description=describe_deficit(supervisors_needed, officers_needed, minimum),
        severity=staffing_severity(supervisors_needed, officers_needed),
    )


def detect_understaffing(start, shifts, registry, fetch_assignments, days=7, shift_id=None,
                         rules=DEFAULT_RULES, include_adequate=False):
    """Scan `days` dates from `start` and report shifts below their minimums.

    fetch_assignments(date) returns {shift_id: [ShiftAssignment, ...]}. A date
    whose fetch raises is logged and skipped; the rest of the scan goes on.
    Shifts with no rule for that weekday are never reported.
    """
    reports = []
    for offset in range(days):
        on_date = start + timedelta(days=offset)
        day = day_of_week(on_date)
        try:
            assignments_by_shift = fetch_assignments(on_date)
        except Exception as e:
            logging.warning(f"Skipping {on_date.isoformat()} in understaffing scan: {e}", exc_info=True)
            continue
        for shift in shifts:
            if shift_id is not None and shift.id != shift_id: continue
            if not registry.has_rule(day, shift.id): continue
            assignments = assignments_by_shift.get(shift.id, [])
            report = check_shift(on_date, shift, classify(assignments, rules), registry.lookup(day, shift.id))
            if report.is_understaffed or include_adequate:
                report.assigned_officers = [
                    {"name": a.officer.full_name, "badge": a.officer.badge_number or "N/A",
                     "position": a.position, "isSupervisor": categorize(a, rules) == 'supervisor'}
                    for a in assignments if categorize(a, rules) is not None
                ]
                reports.append(report)
    logging.info(f"Understaffing scan from {start.isoformat()} over {days} day(s): {sum(r.is_understaffed for r in reports)} understaffed shift(s)")
    return reports
