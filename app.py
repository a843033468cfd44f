# app.py

import json
import logging
from datetime import datetime, date, timedelta
from functools import wraps
from flask import Flask, jsonify, request, send_file
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
import io
import re
import os

import staffing

# --- App Initialization, Config, and Extensions ---
app = Flask(__name__)
CORS(app)
logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s:%(message)s')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///scheduler.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['PTO_BALANCES_ENABLED'] = os.environ.get('PTO_BALANCES_ENABLED', 'true').lower() in ('1', 'true', 'yes')
app.config['UNDERSTAFFED_SCAN_DAYS'] = int(os.environ.get('UNDERSTAFFED_SCAN_DAYS', 7))
app.config['STAFFING_RULES_VERSION'] = int(os.environ.get('STAFFING_RULES_VERSION', staffing.DEFAULT_RULES.version))
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# --- Constants ---
EMAIL_REGEX = r'^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$'
TIME_REGEX = r'^([01]\d|2[0-3]):[0-5]\d$'
PTO_TYPES = ('vacation', 'sick', 'comp', 'holiday', 'other')
PTO_COLUMNS = {'vacation': 'vacation_hours', 'sick': 'sick_hours', 'comp': 'comp_hours', 'holiday': 'holiday_hours'}
REQUEST_STATUSES = ('pending', 'approved', 'denied')

# --- Decorator for Error Handling ---
def api_error_handler(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try: return f(*args, **kwargs)
        except Exception as e:
            db.session.rollback()
            logging.error(f"An error occurred in endpoint '{f.__name__}': {e}", exc_info=True)
            return jsonify({"error": "An unexpected server error occurred."}), 500
    return decorated_function

# --- Database Models ---
class Officer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(100), nullable=False)
    badge_number = db.Column(db.String(20), unique=True, nullable=False)
    rank = db.Column(db.String(20), default=staffing.Rank.OFFICER.value, nullable=False)
    email = db.Column(db.String(120))
    vacation_hours = db.Column(db.Float, default=0, nullable=False)
    sick_hours = db.Column(db.Float, default=0, nullable=False)
    comp_hours = db.Column(db.Float, default=0, nullable=False)
    holiday_hours = db.Column(db.Float, default=0, nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    def to_dict(self):
        return { "id": self.id, "full_name": self.full_name, "badge_number": self.badge_number, "rank": self.rank, "email": self.email, "active": self.active, "pto_balances": self.pto_balances() }
    def pto_balances(self):
        return {pto_type: getattr(self, column) for pto_type, column in PTO_COLUMNS.items()}
    def to_staffing(self):
        return staffing.Officer(id=self.id, full_name=self.full_name, rank=self.rank, badge_number=self.badge_number)
class ShiftType(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    def to_dict(self):
        return { "id": self.id, "name": self.name, "start_time": self.start_time, "end_time": self.end_time }
    def to_shift(self):
        return staffing.Shift(id=self.id, name=self.name, start_time=self.start_time, end_time=self.end_time)
class RecurringSchedule(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    officer_id = db.Column(db.Integer, db.ForeignKey('officer.id'), nullable=False)
    shift_type_id = db.Column(db.Integer, db.ForeignKey('shift_type.id'), nullable=False)
    day_of_week = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.String(10), nullable=False)
    end_date = db.Column(db.String(10))
    position_name = db.Column(db.String(50))
    unit_number = db.Column(db.String(20))
    is_partnership = db.Column(db.Boolean, default=False, nullable=False)
    partner_officer_id = db.Column(db.Integer, db.ForeignKey('officer.id'))
    partnership_suspended = db.Column(db.Boolean, default=False, nullable=False)
    officer = db.relationship('Officer', foreign_keys=[officer_id], backref=db.backref('recurring_schedules', lazy='dynamic'))
    shift_type = db.relationship('ShiftType')
    def to_dict(self):
        return { "id": self.id, "officer_id": self.officer_id, "officer_name": self.officer.full_name, "shift_type_id": self.shift_type_id, "day_of_week": self.day_of_week, "start_date": self.start_date, "end_date": self.end_date, "position_name": self.position_name, "unit_number": self.unit_number, "is_partnership": self.is_partnership, "partner_officer_id": self.partner_officer_id, "partnership_suspended": self.partnership_suspended }
class ScheduleException(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    officer_id = db.Column(db.Integer, db.ForeignKey('officer.id'), nullable=False)
    shift_type_id = db.Column(db.Integer, db.ForeignKey('shift_type.id'), nullable=False)
    date = db.Column(db.String(10), nullable=False)
    is_off = db.Column(db.Boolean, default=False, nullable=False)
    pto_type = db.Column(db.String(20))
    pto_hours = db.Column(db.Float, default=0, nullable=False)
    custom_start_time = db.Column(db.String(5))
    custom_end_time = db.Column(db.String(5))
    position_name = db.Column(db.String(50))
    unit_number = db.Column(db.String(20))
    is_extra_shift = db.Column(db.Boolean, default=False, nullable=False)
    is_partnership = db.Column(db.Boolean, default=False, nullable=False)
    partner_officer_id = db.Column(db.Integer, db.ForeignKey('officer.id'))
    partnership_suspended = db.Column(db.Boolean, default=False, nullable=False)
    is_emergency_partnership = db.Column(db.Boolean, default=False, nullable=False)
    officer = db.relationship('Officer', foreign_keys=[officer_id])
    shift_type = db.relationship('ShiftType')
    def to_dict(self):
        return { "id": self.id, "officer_id": self.officer_id, "officer_name": self.officer.full_name, "shift_type_id": self.shift_type_id, "date": self.date, "is_off": self.is_off, "pto_type": self.pto_type, "pto_hours": self.pto_hours, "custom_start_time": self.custom_start_time, "custom_end_time": self.custom_end_time, "position_name": self.position_name, "unit_number": self.unit_number, "is_extra_shift": self.is_extra_shift, "is_partnership": self.is_partnership, "partner_officer_id": self.partner_officer_id, "partnership_suspended": self.partnership_suspended, "is_emergency_partnership": self.is_emergency_partnership }
class MinimumStaffing(db.Model):
    __table_args__ = (db.UniqueConstraint('shift_type_id', 'day_of_week'),)
    id = db.Column(db.Integer, primary_key=True)
    shift_type_id = db.Column(db.Integer, db.ForeignKey('shift_type.id'), nullable=False)
    day_of_week = db.Column(db.Integer, nullable=False)
    minimum_officers = db.Column(db.Integer, default=0, nullable=False)
    minimum_supervisors = db.Column(db.Integer, default=0, nullable=False)
    shift_type = db.relationship('ShiftType')
    def to_dict(self):
        return { "id": self.id, "shift_type_id": self.shift_type_id, "shift_name": self.shift_type.name, "day_of_week": self.day_of_week, "day_name": staffing.DAY_NAMES[self.day_of_week], "minimum_officers": self.minimum_officers, "minimum_supervisors": self.minimum_supervisors }
    def to_rule(self):
        return staffing.MinimumStaffingRule(day_of_week=self.day_of_week, shift_id=self.shift_type_id, minimum_officers=self.minimum_officers, minimum_supervisors=self.minimum_supervisors)
class TimeOffRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    officer_id = db.Column(db.Integer, db.ForeignKey('officer.id'), nullable=False)
    start_date = db.Column(db.String(10), nullable=False)
    end_date = db.Column(db.String(10), nullable=False)
    pto_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(10), default='pending', nullable=False)
    notes = db.Column(db.String(500), default='')
    officer = db.relationship('Officer')
    def to_dict(self):
        return { "id": self.id, "officer_id": self.officer_id, "officer_name": self.officer.full_name, "start_date": self.start_date, "end_date": self.end_date, "pto_type": self.pto_type, "status": self.status, "notes": self.notes }
class Setting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False)
    value = db.Column(db.JSON)
    def to_dict(self):
        return { "key": self.key, "value": self.value }

# --- Helper Functions ---
def get_settings_from_db():
    settings_db = Setting.query.all()
    settings = {s.key: s.value for s in settings_db}
    if 'pto_balances_enabled' not in settings:
        s = Setting(key='pto_balances_enabled', value=app.config['PTO_BALANCES_ENABLED']); db.session.add(s)
        settings['pto_balances_enabled'] = s.value
    if 'understaffed_scan_days' not in settings:
        s = Setting(key='understaffed_scan_days', value=app.config['UNDERSTAFFED_SCAN_DAYS']); db.session.add(s)
        settings['understaffed_scan_days'] = s.value
    db.session.commit()
    return settings
def get_exclusion_rules():
    return staffing.RULES_BY_VERSION.get(app.config['STAFFING_RULES_VERSION'], staffing.DEFAULT_RULES)
def parse_date(value):
    return datetime.strptime(value or '', '%Y-%m-%d').date()
def parse_minimum(payload, key):
    value = int(payload.get(key, 0))
    if value < 0: raise ValueError(f"{key} cannot be negative.")
    return value
def calculate_hours(start_time, end_time):
    start_h, start_m = map(int, start_time.split(':'))
    end_h, end_m = map(int, end_time.split(':'))
    minutes = (end_h * 60 + end_m) - (start_h * 60 + start_m)
    if minutes <= 0: minutes += 24 * 60
    return round(minutes / 60, 2)
def load_registry():
    return staffing.MinimumStaffingRegistry([r.to_rule() for r in MinimumStaffing.query.all()])
def _pto_state(off_exception):
    """Map an off exception to (is_off, has_pto, pto_type, pto_full_day)."""
    if not off_exception: return False, False, '', True
    partial = bool(off_exception.custom_start_time and off_exception.custom_end_time)
    if not off_exception.pto_type and not partial: return True, False, '', True
    return False, True, off_exception.pto_type or '', not partial
def active_recurring_query(on_date):
    """Recurring schedules in effect on `on_date`."""
    date_str = on_date.isoformat()
    return RecurringSchedule.query.filter(
        RecurringSchedule.day_of_week == staffing.day_of_week(on_date),
        RecurringSchedule.start_date <= date_str,
        db.or_(RecurringSchedule.end_date.is_(None), RecurringSchedule.end_date >= date_str))
def _charge_pto(officer, pto_type, hours):
    """Deduct `hours` from the officer's balance. Returns an error message when the balance is short."""
    column = PTO_COLUMNS.get(pto_type)
    if not get_settings_from_db()['pto_balances_enabled'] or not column: return None
    balance = getattr(officer, column)
    if balance < hours: return f"Insufficient {pto_type} balance. Available: {balance} hours, Required: {hours} hours"
    setattr(officer, column, balance - hours)
    return None
def build_day_assignments(on_date, shift_id=None):
    """Resolve recurring schedules and exceptions into {shift_id: [ShiftAssignment]} for one date."""
    date_str = on_date.isoformat()
    recurring_query = active_recurring_query(on_date)
    exception_query = ScheduleException.query.filter_by(date=date_str)
    if shift_id is not None:
        recurring_query = recurring_query.filter_by(shift_type_id=shift_id)
        exception_query = exception_query.filter_by(shift_type_id=shift_id)
    exceptions = exception_query.all()
    off_rows = {(e.officer_id, e.shift_type_id): e for e in exceptions if e.is_off}
    working_rows = {(e.officer_id, e.shift_type_id): e for e in exceptions if not e.is_off}
    assignments, scheduled = {}, set()
    for r in recurring_query.all():
        if not r.officer.active: continue
        key = (r.officer_id, r.shift_type_id)
        working = working_rows.get(key)
        is_off, has_pto, pto_type, pto_full_day = _pto_state(off_rows.get(key))
        assignments.setdefault(r.shift_type_id, []).append(staffing.ShiftAssignment(
            officer=r.officer.to_staffing(), shift_id=r.shift_type_id, date=date_str,
            position=(working and working.position_name) or r.position_name or 'Officer',
            unit_number=(working and working.unit_number) or r.unit_number or '',
            is_off=is_off, has_pto=has_pto, pto_type=pto_type, pto_full_day=pto_full_day,
            is_extra_shift=bool(working and working.is_extra_shift),
            is_partnership=r.is_partnership or bool(working and working.is_partnership),
            partnership_suspended=working.partnership_suspended if working else r.partnership_suspended,
            partner_officer_id=(working and working.partner_officer_id) or r.partner_officer_id))
        scheduled.add(key)
    for key, e in working_rows.items():
        if key in scheduled or not e.officer.active: continue
        is_off, has_pto, pto_type, pto_full_day = _pto_state(off_rows.get(key))
        assignments.setdefault(e.shift_type_id, []).append(staffing.ShiftAssignment(
            officer=e.officer.to_staffing(), shift_id=e.shift_type_id, date=date_str,
            position=e.position_name or 'Officer', unit_number=e.unit_number or '',
            is_off=is_off, has_pto=has_pto, pto_type=pto_type, pto_full_day=pto_full_day,
            is_extra_shift=e.is_extra_shift, is_partnership=e.is_partnership,
            partnership_suspended=e.partnership_suspended, partner_officer_id=e.partner_officer_id))
    return assignments
def _set_partner_suspension(officer_id, shift, date_str, suspended):
    """Suspend or restore the partnership of whoever rides with `officer_id` on that date."""
    on_date = parse_date(date_str)
    recurring = active_recurring_query(on_date).filter(
        RecurringSchedule.officer_id == officer_id, RecurringSchedule.shift_type_id == shift.id,
        RecurringSchedule.is_partnership.is_(True)).first()
    if not recurring or not recurring.partner_officer_id: return None
    partner_row = ScheduleException.query.filter_by(officer_id=recurring.partner_officer_id, shift_type_id=shift.id, date=date_str, is_off=False).first()
    if partner_row and partner_row.is_emergency_partnership: return None
    if not partner_row:
        if not suspended: return None
        if not active_recurring_query(on_date).filter_by(officer_id=recurring.partner_officer_id, shift_type_id=shift.id).first(): return None
        partner_row = ScheduleException(officer_id=recurring.partner_officer_id, shift_type_id=shift.id, date=date_str, is_off=False, is_partnership=True, partner_officer_id=officer_id)
        db.session.add(partner_row)
    partner_row.partnership_suspended = suspended
    return recurring.partner_officer_id

# --- API Endpoints: Roster ---
@app.route("/api/officers", methods=['GET', 'POST'])
@api_error_handler
def handle_officers():
    if request.method == 'GET':
        query = Officer.query if request.args.get('include_inactive') else Officer.query.filter_by(active=True)
        return jsonify([o.to_dict() for o in query.order_by(Officer.full_name).all()])
    payload = request.get_json()
    full_name, badge_number, email = payload.get('full_name'), payload.get('badge_number'), payload.get('email')
    if not all([full_name, badge_number]): return jsonify({"error": "Full name and badge number are mandatory fields."}), 400
    if email and not re.match(EMAIL_REGEX, email): return jsonify({"error": "Invalid email format."}), 400
    if Officer.query.filter(db.func.lower(Officer.badge_number) == str(badge_number).lower()).first(): return jsonify({"error": "An officer with that badge number already exists (case-insensitive)."}), 409
    try: balances = {column: float(payload.get(pto_type, 0) or 0) for pto_type, column in PTO_COLUMNS.items()}
    except (TypeError, ValueError): return jsonify({"error": "PTO balances must be numbers."}), 400
    if any(v < 0 for v in balances.values()): return jsonify({"error": "PTO balances cannot be negative."}), 400
    rank = staffing.Rank.from_text(payload.get('rank'))
    officer = Officer(full_name=full_name, badge_number=str(badge_number), rank=rank.value, email=email, **balances)
    db.session.add(officer)
    db.session.commit()
    logging.info(f"Officer {full_name} (badge {badge_number}) added as {rank.value}.")
    return jsonify({"message": f"Officer {full_name} added.", "id": officer.id})

@app.route("/api/officers/<int:officer_id>", methods=['PUT', 'DELETE'])
@api_error_handler
def handle_officer(officer_id):
    officer = db.session.get(Officer, officer_id)
    if not officer: return jsonify({"error": "Officer not found"}), 404
    if request.method == 'DELETE':
        name = officer.full_name
        RecurringSchedule.query.filter_by(officer_id=officer_id).delete()
        ScheduleException.query.filter_by(officer_id=officer_id).delete()
        TimeOffRequest.query.filter_by(officer_id=officer_id).delete()
        for model in (RecurringSchedule, ScheduleException):
            model.query.filter_by(partner_officer_id=officer_id).update({model.partner_officer_id: None, model.is_partnership: False})
        db.session.delete(officer)
        db.session.commit()
        logging.info(f"Officer {name} and their schedules deleted.")
        return jsonify({"message": f"Officer {name} deleted."})
    payload = request.get_json()
    if 'email' in payload and payload['email'] and not re.match(EMAIL_REGEX, payload['email']): return jsonify({"error": "Invalid email format."}), 400
    if 'badge_number' in payload:
        clash = Officer.query.filter(db.func.lower(Officer.badge_number) == str(payload['badge_number']).lower(), Officer.id != officer_id).first()
        if clash: return jsonify({"error": "An officer with that badge number already exists (case-insensitive)."}), 409
        officer.badge_number = str(payload['badge_number'])
    for pto_type, column in PTO_COLUMNS.items():
        if pto_type not in payload: continue
        try: hours = float(payload[pto_type])
        except (TypeError, ValueError): return jsonify({"error": "PTO balances must be numbers."}), 400
        if hours < 0: return jsonify({"error": "PTO balances cannot be negative."}), 400
        setattr(officer, column, hours)
    if 'full_name' in payload: officer.full_name = payload['full_name']
    if 'email' in payload: officer.email = payload['email']
    if 'active' in payload: officer.active = bool(payload['active'])
    if 'rank' in payload: officer.rank = staffing.Rank.from_text(payload['rank']).value
    db.session.commit()
    return jsonify({"message": f"Officer {officer.full_name} updated.", "officer": officer.to_dict()})

@app.route("/api/officers/<int:officer_id>/pto-balances", methods=['GET'])
@api_error_handler
def get_pto_balances(officer_id):
    officer = db.session.get(Officer, officer_id)
    if not officer: return jsonify({"error": "Officer not found"}), 404
    return jsonify({"officer_id": officer.id, "balances": officer.pto_balances(), "balances_enabled": get_settings_from_db()['pto_balances_enabled']})

# --- API Endpoints: Shifts and Schedules ---
@app.route("/api/shift-types", methods=['GET', 'POST'])
@api_error_handler
def handle_shift_types():
    if request.method == 'GET': return jsonify([s.to_dict() for s in ShiftType.query.order_by(ShiftType.start_time).all()])
    payload = request.get_json()
    name, start_time, end_time = payload.get('name'), payload.get('start_time'), payload.get('end_time')
    if not all([name, start_time, end_time]): return jsonify({"error": "Name, start time and end time are required."}), 400
    if not (re.match(TIME_REGEX, start_time) and re.match(TIME_REGEX, end_time)): return jsonify({"error": "Times must be in HH:MM format."}), 400
    if ShiftType.query.filter(db.func.lower(ShiftType.name) == name.lower()).first(): return jsonify({"error": f"Shift '{name}' already exists (case-insensitive)."}), 409
    shift = ShiftType(name=name, start_time=start_time, end_time=end_time)
    db.session.add(shift)
    db.session.commit()
    return jsonify({"message": f"Shift '{name}' created successfully.", "id": shift.id})

@app.route("/api/shift-types/<int:shift_id>", methods=['DELETE'])
@api_error_handler
def delete_shift_type(shift_id):
    shift = db.session.get(ShiftType, shift_id)
    if not shift: return jsonify({"error": "Shift not found."}), 404
    MinimumStaffing.query.filter_by(shift_type_id=shift_id).delete()
    RecurringSchedule.query.filter_by(shift_type_id=shift_id).delete()
    ScheduleException.query.filter_by(shift_type_id=shift_id).delete()
    db.session.delete(shift)
    db.session.commit()
    return jsonify({"message": f"Shift {shift.name} and all its schedules have been deleted."})

@app.route("/api/recurring-schedules", methods=['GET', 'POST'])
@api_error_handler
def handle_recurring_schedules():
    if request.method == 'GET':
        query = RecurringSchedule.query
        if request.args.get('officer_id'): query = query.filter_by(officer_id=int(request.args['officer_id']))
        return jsonify([r.to_dict() for r in query.order_by(RecurringSchedule.day_of_week).all()])
    payload = request.get_json()
    officer_id, shift_id, day = payload.get('officer_id'), payload.get('shift_type_id'), payload.get('day_of_week')
    if officer_id is None or shift_id is None or day is None: return jsonify({"error": "Officer, shift and day of week are required."}), 400
    if not db.session.get(Officer, officer_id): return jsonify({"error": "Officer not found"}), 404
    if not db.session.get(ShiftType, shift_id): return jsonify({"error": "Shift not found"}), 404
    if int(day) not in range(7): return jsonify({"error": "Day of week must be between 0 (Sunday) and 6 (Saturday)."}), 400
    try:
        start_date = parse_date(payload.get('start_date') or date.today().isoformat())
        end_date = parse_date(payload['end_date']) if payload.get('end_date') else None
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    if end_date and end_date < start_date: return jsonify({"error": "End date cannot be before start date."}), 400
    if RecurringSchedule.query.filter_by(officer_id=officer_id, shift_type_id=shift_id, day_of_week=int(day), end_date=None).first(): return jsonify({"error": "Officer already has an open-ended schedule for that shift and day."}), 409
    schedule = RecurringSchedule(officer_id=officer_id, shift_type_id=shift_id, day_of_week=int(day), start_date=start_date.isoformat(), end_date=end_date.isoformat() if end_date else None, position_name=payload.get('position_name'), unit_number=payload.get('unit_number'), is_partnership=bool(payload.get('is_partnership')), partner_officer_id=payload.get('partner_officer_id'))
    db.session.add(schedule)
    db.session.commit()
    return jsonify({"message": "Recurring schedule added.", "id": schedule.id})

@app.route("/api/recurring-schedules/<int:schedule_id>", methods=['DELETE'])
@api_error_handler
def delete_recurring_schedule(schedule_id):
    schedule = db.session.get(RecurringSchedule, schedule_id)
    if not schedule: return jsonify({"error": "Schedule not found"}), 404
    end_date = request.args.get('end_date')
    if end_date:
        try: parse_date(end_date)
        except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
        schedule.end_date = end_date
        db.session.commit()
        return jsonify({"message": f"Schedule ended on {end_date}."})
    db.session.delete(schedule)
    db.session.commit()
    return jsonify({"message": "Schedule deleted."})

@app.route("/api/schedule-exceptions", methods=['GET', 'POST'])
@api_error_handler
def handle_schedule_exceptions():
    if request.method == 'GET':
        date_str = request.args.get('date')
        if not date_str: return jsonify({"error": "Date is required"}), 400
        return jsonify([e.to_dict() for e in ScheduleException.query.filter_by(date=date_str).all()])
    payload = request.get_json()
    officer_id, shift_id = payload.get('officer_id'), payload.get('shift_type_id')
    if not db.session.get(Officer, officer_id or 0): return jsonify({"error": "Officer not found"}), 404
    if not db.session.get(ShiftType, shift_id or 0): return jsonify({"error": "Shift not found"}), 404
    try: date_str = parse_date(payload.get('date')).isoformat()
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    for key in ('custom_start_time', 'custom_end_time'):
        if payload.get(key) and not re.match(TIME_REGEX, payload[key]): return jsonify({"error": "Times must be in HH:MM format."}), 400
    is_off = bool(payload.get('is_off'))
    if ScheduleException.query.filter_by(officer_id=officer_id, shift_type_id=shift_id, date=date_str, is_off=is_off).first(): return jsonify({"error": "An exception of that kind already exists for this officer, shift and date."}), 409
    exception = ScheduleException(officer_id=officer_id, shift_type_id=shift_id, date=date_str, is_off=is_off, pto_type=payload.get('pto_type'), custom_start_time=payload.get('custom_start_time'), custom_end_time=payload.get('custom_end_time'), position_name=payload.get('position_name'), unit_number=payload.get('unit_number'), is_extra_shift=bool(payload.get('is_extra_shift')), is_partnership=bool(payload.get('is_partnership')), partner_officer_id=payload.get('partner_officer_id'), partnership_suspended=bool(payload.get('partnership_suspended')))
    db.session.add(exception)
    db.session.commit()
    return jsonify({"message": "Schedule exception added.", "id": exception.id})

@app.route("/api/schedule-exceptions/<int:exception_id>", methods=['DELETE'])
@api_error_handler
def delete_schedule_exception(exception_id):
    exception = db.session.get(ScheduleException, exception_id)
    if not exception: return jsonify({"error": "Exception not found"}), 404
    db.session.delete(exception)
    db.session.commit()
    return jsonify({"message": "Schedule exception deleted."})

# --- API Endpoints: PTO and Time Off ---
@app.route("/api/pto", methods=['POST'])
@api_error_handler
def assign_pto():
    payload = request.get_json()
    officer_id, shift_id, pto_type = payload.get('officer_id'), payload.get('shift_type_id'), (payload.get('pto_type') or '').lower()
    officer, shift = db.session.get(Officer, officer_id or 0), db.session.get(ShiftType, shift_id or 0)
    if not officer: return jsonify({"error": "Officer not found"}), 404
    if not shift: return jsonify({"error": "Shift not found"}), 404
    if pto_type not in PTO_TYPES: return jsonify({"error": f"PTO type must be one of: {', '.join(PTO_TYPES)}."}), 400
    try: date_str = parse_date(payload.get('date')).isoformat()
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    start_time, end_time = payload.get('start_time'), payload.get('end_time')
    if bool(start_time) != bool(end_time): return jsonify({"error": "Partial PTO needs both a start and an end time."}), 400
    if start_time and not (re.match(TIME_REGEX, start_time) and re.match(TIME_REGEX, end_time)): return jsonify({"error": "Times must be in HH:MM format."}), 400
    if ScheduleException.query.filter_by(officer_id=officer.id, shift_type_id=shift.id, date=date_str, is_off=True).first(): return jsonify({"error": "Officer already has time off on that shift and date."}), 409
    hours = calculate_hours(start_time or shift.start_time, end_time or shift.end_time)
    shortfall = _charge_pto(officer, pto_type, hours)
    if shortfall: return jsonify({"error": shortfall}), 400
    pto = ScheduleException(officer_id=officer.id, shift_type_id=shift.id, date=date_str, is_off=True, pto_type=pto_type, pto_hours=hours, custom_start_time=start_time, custom_end_time=end_time)
    db.session.add(pto)
    partner_id = _set_partner_suspension(officer.id, shift, date_str, suspended=True)
    db.session.commit()
    logging.info(f"Assigned {pto_type} PTO to {officer.full_name} on {date_str} ({hours} hours).")
    return jsonify({"message": f"Assigned {pto_type} PTO to {officer.full_name} on {date_str}.", "id": pto.id, "hours": hours, "suspended_partner_id": partner_id})

@app.route("/api/pto/<int:exception_id>", methods=['DELETE'])
@api_error_handler
def remove_pto(exception_id):
    pto = db.session.get(ScheduleException, exception_id)
    if not pto or not pto.is_off or not pto.pto_type: return jsonify({"error": "PTO not found"}), 404
    column = PTO_COLUMNS.get(pto.pto_type)
    restored = 0
    if get_settings_from_db()['pto_balances_enabled'] and column:
        setattr(pto.officer, column, getattr(pto.officer, column) + pto.pto_hours)
        restored = pto.pto_hours
    summary = f"{pto.pto_type} PTO for officer {pto.officer_id} on {pto.date}"
    _set_partner_suspension(pto.officer_id, pto.shift_type, pto.date, suspended=False)
    db.session.delete(pto)
    db.session.commit()
    logging.info(f"Removed {summary}; {restored} hours restored.")
    return jsonify({"message": "PTO removed.", "hours_restored": restored})

@app.route("/api/pto/bulk", methods=['POST'])
@api_error_handler
def assign_bulk_pto():
    """Assigns PTO on every scheduled shift in a date range. The balance is checked and charged once for the total."""
    payload = request.get_json()
    officer, pto_type = db.session.get(Officer, payload.get('officer_id') or 0), (payload.get('pto_type') or '').lower()
    if not officer: return jsonify({"error": "Officer not found"}), 404
    if pto_type not in PTO_TYPES: return jsonify({"error": f"PTO type must be one of: {', '.join(PTO_TYPES)}."}), 400
    try: shift_ids = {int(s) for s in payload.get('shift_type_ids') or []}
    except (TypeError, ValueError): return jsonify({"error": "Shift ids must be integers."}), 400
    if not shift_ids: return jsonify({"error": "Select at least one shift."}), 400
    shifts = {s.id: s for s in ShiftType.query.filter(ShiftType.id.in_(shift_ids)).all()}
    if len(shifts) != len(shift_ids): return jsonify({"error": "Shift not found"}), 404
    try: start, end = parse_date(payload.get('start_date')), parse_date(payload.get('end_date') or payload.get('start_date'))
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    if end < start: return jsonify({"error": "End date cannot be before start date."}), 400
    if (end - start).days >= 366: return jsonify({"error": "Bulk PTO can cover at most 366 days."}), 400
    start_time, end_time = payload.get('start_time'), payload.get('end_time')
    if bool(start_time) != bool(end_time): return jsonify({"error": "Partial PTO needs both a start and an end time."}), 400
    if start_time and not (re.match(TIME_REGEX, start_time) and re.match(TIME_REGEX, end_time)): return jsonify({"error": "Times must be in HH:MM format."}), 400
    exclude_weekends = bool(payload.get('exclude_weekends', True))
    planned, skipped, on_date = [], [], start
    while on_date <= end:
        if not (exclude_weekends and on_date.weekday() >= 5):
            date_str = on_date.isoformat()
            scheduled = {r.shift_type_id for r in active_recurring_query(on_date).filter(RecurringSchedule.officer_id == officer.id, RecurringSchedule.shift_type_id.in_(shift_ids)).all()}
            for shift_id in sorted(scheduled):
                if ScheduleException.query.filter_by(officer_id=officer.id, shift_type_id=shift_id, date=date_str, is_off=True).first(): skipped.append(f"{date_str} - {shifts[shift_id].name}")
                else: planned.append((date_str, shifts[shift_id]))
        on_date += timedelta(days=1)
    if not planned: return jsonify({"error": "Officer has no scheduled shifts without time off in that range.", "skipped": skipped}), 400
    hours = [calculate_hours(start_time or shift.start_time, end_time or shift.end_time) for _, shift in planned]
    total = round(sum(hours), 2)
    shortfall = _charge_pto(officer, pto_type, total)
    if shortfall: return jsonify({"error": shortfall}), 400
    for (date_str, shift), shift_hours in zip(planned, hours):
        db.session.add(ScheduleException(officer_id=officer.id, shift_type_id=shift.id, date=date_str, is_off=True, pto_type=pto_type, pto_hours=shift_hours, custom_start_time=start_time, custom_end_time=end_time))
        _set_partner_suspension(officer.id, shift, date_str, suspended=True)
    db.session.commit()
    dates = sorted({date_str for date_str, _ in planned})
    logging.info(f"Assigned {pto_type} PTO to {officer.full_name} for {len(planned)} shift(s) from {dates[0]} to {dates[-1]} ({total} hours).")
    return jsonify({"message": f"PTO assigned successfully for {len(planned)} shift(s).", "shifts": len(planned), "hours": total, "dates": dates, "skipped": skipped})

@app.route("/api/partnerships/emergency", methods=['POST'])
@api_error_handler
def assign_emergency_partner():
    """Pairs a probationary officer with a new partner for one shift, e.g. after their partner took time off."""
    payload = request.get_json()
    ppo, partner = db.session.get(Officer, payload.get('ppo_officer_id') or 0), db.session.get(Officer, payload.get('partner_officer_id') or 0)
    shift = db.session.get(ShiftType, payload.get('shift_type_id') or 0)
    if not ppo or not partner: return jsonify({"error": "Officer not found"}), 404
    if not shift: return jsonify({"error": "Shift not found"}), 404
    try: on_date = parse_date(payload.get('date'))
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    if not staffing.is_ppo_rank(ppo.rank): return jsonify({"error": "Emergency partner reassignment is only available for probationary officers."}), 400
    if partner.id == ppo.id or staffing.is_ppo_rank(partner.rank): return jsonify({"error": "Cannot assign a probationary officer as an emergency partner."}), 400
    rules = get_exclusion_rules()
    working = {a.officer.id: a for a in build_day_assignments(on_date, shift.id).get(shift.id, []) if not a.is_off and not staffing.has_excluded_pto(a, rules)}
    if ppo.id not in working or partner.id not in working: return jsonify({"error": "Both officers must be working this shift on that date."}), 400
    for officer in (ppo, partner):
        if working[officer.id].active_partnership: return jsonify({"error": f"{officer.full_name} already has an active partnership on this shift."}), 409
    date_str = on_date.isoformat()
    for officer_id, other_id in ((ppo.id, partner.id), (partner.id, ppo.id)):
        row = ScheduleException.query.filter_by(officer_id=officer_id, shift_type_id=shift.id, date=date_str, is_off=False).first()
        if not row:
            current = working[officer_id]
            row = ScheduleException(officer_id=officer_id, shift_type_id=shift.id, date=date_str, is_off=False, position_name=current.position, unit_number=current.unit_number or None)
            db.session.add(row)
        row.is_partnership, row.partner_officer_id, row.partnership_suspended, row.is_emergency_partnership = True, other_id, False, True
    db.session.commit()
    logging.info(f"Emergency partnership on {date_str} ({shift.name}): {ppo.full_name} with {partner.full_name}.")
    return jsonify({"message": f"{ppo.full_name} now rides with {partner.full_name} on {date_str}.", "ppo_officer_id": ppo.id, "partner_officer_id": partner.id})

@app.route("/api/time-off-requests", methods=['GET', 'POST'])
@api_error_handler
def handle_time_off_requests():
    if request.method == 'GET':
        query = TimeOffRequest.query
        if request.args.get('status'): query = query.filter_by(status=request.args['status'])
        if request.args.get('officer_id'): query = query.filter_by(officer_id=int(request.args['officer_id']))
        return jsonify([r.to_dict() for r in query.order_by(TimeOffRequest.start_date).all()])
    payload = request.get_json()
    if not db.session.get(Officer, payload.get('officer_id') or 0): return jsonify({"error": "Officer not found"}), 404
    pto_type = (payload.get('pto_type') or '').lower()
    if pto_type not in PTO_TYPES: return jsonify({"error": f"PTO type must be one of: {', '.join(PTO_TYPES)}."}), 400
    try: start_date, end_date = parse_date(payload.get('start_date')), parse_date(payload.get('end_date') or payload.get('start_date'))
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    if end_date < start_date: return jsonify({"error": "End date cannot be before start date."}), 400
    time_off = TimeOffRequest(officer_id=payload['officer_id'], start_date=start_date.isoformat(), end_date=end_date.isoformat(), pto_type=pto_type, notes=payload.get('notes', ''))
    db.session.add(time_off)
    db.session.commit()
    return jsonify({"message": "Time off request submitted.", "id": time_off.id})

@app.route("/api/time-off-requests/<int:request_id>", methods=['PUT'])
@api_error_handler
def update_time_off_request(request_id):
    time_off = db.session.get(TimeOffRequest, request_id)
    if not time_off: return jsonify({"error": "Request not found"}), 404
    payload = request.get_json()
    status = payload.get('status')
    if status not in REQUEST_STATUSES[1:]: return jsonify({"error": "Status must be 'approved' or 'denied'."}), 400
    if time_off.status != 'pending': return jsonify({"error": f"Request has already been {time_off.status}."}), 409
    time_off.status = status
    if payload.get('notes'): time_off.notes = payload['notes']
    db.session.commit()
    logging.info(f"Time off request {request_id} for officer {time_off.officer_id} {status}.")
    return jsonify({"message": f"Request {status}."})

# --- API Endpoints: Minimum Staffing ---
@app.route("/api/minimum-staffing", methods=['GET', 'POST'])
@api_error_handler
def handle_minimum_staffing():
    if request.method == 'GET':
        query = MinimumStaffing.query
        if request.args.get('shift'): query = query.filter_by(shift_type_id=int(request.args['shift']))
        return jsonify([r.to_dict() for r in query.order_by(MinimumStaffing.day_of_week, MinimumStaffing.shift_type_id).all()])
    payload = request.get_json()
    shift_id, day = payload.get('shift_type_id'), payload.get('day_of_week')
    if shift_id is None or day is None: return jsonify({"error": "Please select a shift type and day."}), 400
    if not db.session.get(ShiftType, shift_id): return jsonify({"error": "Shift not found"}), 404
    try: day, minimum_officers, minimum_supervisors = int(day), parse_minimum(payload, 'minimum_officers'), parse_minimum(payload, 'minimum_supervisors')
    except (TypeError, ValueError) as e: return jsonify({"error": f"Invalid minimum staffing values: {e}"}), 400
    if day not in range(7): return jsonify({"error": "Day of week must be between 0 (Sunday) and 6 (Saturday)."}), 400
    if MinimumStaffing.query.filter_by(shift_type_id=shift_id, day_of_week=day).first(): return jsonify({"error": "A rule already exists for this shift and day."}), 409
    rule = MinimumStaffing(shift_type_id=shift_id, day_of_week=day, minimum_officers=minimum_officers, minimum_supervisors=minimum_supervisors)
    db.session.add(rule)
    db.session.commit()
    return jsonify({"message": "Staffing rule added successfully.", "id": rule.id})

@app.route("/api/minimum-staffing/<int:rule_id>", methods=['PUT', 'DELETE'])
@api_error_handler
def handle_minimum_staffing_rule(rule_id):
    rule = db.session.get(MinimumStaffing, rule_id)
    if not rule: return jsonify({"error": "Rule not found"}), 404
    if request.method == 'DELETE':
        db.session.delete(rule)
        db.session.commit()
        return jsonify({"message": "Rule deleted successfully."})
    payload = request.get_json()
    try:
        for key in ('minimum_officers', 'minimum_supervisors'):
            if key in payload: setattr(rule, key, parse_minimum(payload, key))
    except (TypeError, ValueError) as e:
        db.session.rollback()
        return jsonify({"error": f"Invalid minimum staffing values: {e}"}), 400
    db.session.commit()
    return jsonify({"message": "Rule updated successfully.", "rule": rule.to_dict()})

@app.route("/api/minimum-staffing/seed", methods=['POST'])
@api_error_handler
def seed_minimum_staffing():
    """Adds rules with name-based defaults for every day the shift has no rule yet."""
    shift = db.session.get(ShiftType, request.get_json().get('shift_type_id') or 0)
    if not shift: return jsonify({"error": "Shift not found"}), 404
    missing_days = load_registry().missing_days(shift.id)
    if not missing_days: return jsonify({"message": "Rules already exist for all days", "added": 0})
    officers, supervisors = staffing.smart_defaults(shift.name)
    for day in missing_days: db.session.add(MinimumStaffing(shift_type_id=shift.id, day_of_week=day, minimum_officers=officers, minimum_supervisors=supervisors))
    db.session.commit()
    return jsonify({"message": f"Added {len(missing_days)} rules for {shift.name}", "added": len(missing_days)})

# --- API Endpoints: Staffing ---
@app.route("/api/daily-staffing", methods=['GET'])
@api_error_handler
def daily_staffing():
    try: on_date = parse_date(request.args.get('date', date.today().isoformat()))
    except ValueError: return jsonify({"error": "Dates must be in YYYY-MM-DD format."}), 400
    shift_filter = request.args.get('shift', 'all')
    if shift_filter != 'all' and not shift_filter.isdigit(): return jsonify({"error": "Shift must be 'all' or a shift id."}), 400
    shifts = ShiftType.query.order_by(ShiftType.start_time).all()
    if shift_filter != 'all': shifts = [s for s in shifts if str(s.id) == shift_filter]
    rules, registry = get_exclusion_rules(), load_registry()
    assignments_by_shift = build_day_assignments(on_date, int(shift_filter) if shift_filter != 'all' else None)
    day, result = staffing.day_of_week(on_date), []
    for shift in shifts:
        assignments = assignments_by_shift.get(shift.id, [])
        split = staffing.classify_split(assignments, rules)
        minimum = registry.lookup(day, shift.id)
        check = staffing.check_shift(on_date, shift.to_shift(), split['total'], minimum)
        groups = {name: [dict(a.to_dict(), category=staffing.categorize_position(a.position, rules).value) for a in members] for name, members in staffing.group_assignments(assignments, rules).items()}
        result.append({ "shift": shift.to_dict(), "date": on_date.isoformat(), "groups": groups, "counts": {k: v.to_dict() for k, v in split.items()}, "minimum": {"minimum_officers": minimum.minimum_officers, "minimum_supervisors": minimum.minimum_supervisors, "summary": minimum.summary(), "has_rule": registry.has_rule(day, shift.id)}, "staffing": check.to_dict() })
    return jsonify(result)

@app.route("/api/understaffed", methods=['GET'])
@api_error_handler
def understaffed_shifts():
    try:
        start = parse_date(request.args.get('start', date.today().isoformat()))
        days = int(request.args.get('days', get_settings_from_db()['understaffed_scan_days']))
    except ValueError: return jsonify({"error": "Invalid start date or number of days."}), 400
    if days < 1 or days > 31: return jsonify({"error": "Days must be between 1 and 31."}), 400
    shift_filter = request.args.get('shift', 'all')
    if shift_filter != 'all' and not shift_filter.isdigit(): return jsonify({"error": "Shift must be 'all' or a shift id."}), 400
    shift_id = int(shift_filter) if shift_filter != 'all' else None
    shifts = [s.to_shift() for s in ShiftType.query.order_by(ShiftType.start_time).all()]
    reports = staffing.detect_understaffing(start, shifts, load_registry(), lambda d: build_day_assignments(d, shift_id), days=days, shift_id=shift_id, rules=get_exclusion_rules(), include_adequate=bool(request.args.get('include_adequate')))
    return jsonify({"start": start.isoformat(), "days": days, "understaffedShifts": [r.to_dict() for r in reports]})

# --- API Endpoints: Settings and Backup ---
@app.route("/api/settings", methods=['GET', 'POST'])
@api_error_handler
def handle_settings():
    if request.method == 'GET':
        settings = get_settings_from_db()
        settings['staffing_rules_version'] = get_exclusion_rules().version
        return jsonify(settings)
    payload = request.get_json()
    get_settings_from_db()
    if 'pto_balances_enabled' in payload: Setting.query.filter_by(key='pto_balances_enabled').first().value = bool(payload['pto_balances_enabled'])
    if 'understaffed_scan_days' in payload:
        try: days = int(payload['understaffed_scan_days'])
        except (TypeError, ValueError): days = 0
        if days < 1 or days > 31: return jsonify({"error": "Scan days must be between 1 and 31."}), 400
        Setting.query.filter_by(key='understaffed_scan_days').first().value = days
    db.session.commit()
    return jsonify({"message": "Settings updated successfully."})

@app.route('/api/backup', methods=['GET'])
@api_error_handler
def backup_data():
    settings = get_settings_from_db()
    data = { "officers": [o.to_dict() for o in Officer.query.all()], "shiftTypes": [s.to_dict() for s in ShiftType.query.all()], "recurringSchedules": [r.to_dict() for r in RecurringSchedule.query.all()], "scheduleExceptions": [e.to_dict() for e in ScheduleException.query.all()], "minimumStaffing": [m.to_dict() for m in MinimumStaffing.query.all()], "timeOffRequests": [t.to_dict() for t in TimeOffRequest.query.all()], "settings": settings }
    mem_file = io.BytesIO(json.dumps(data, indent=4).encode('utf-8'))
    mem_file.seek(0)
    timestamp = datetime.now().strftime('%Y-%m-%d_%H%M%S')
    filename = f"scheduler_backup_{timestamp}.json"
    return send_file(mem_file, as_attachment=True, download_name=filename, mimetype='application/json')

if __name__ == "__main__":
    with app.app_context(): db.create_all()
    app.run(host='0.0.0.0', port=5000, debug=True)
