# Overview: Flask CLI command groups for bootstrap, fleet setup, submissions, overhauls and ratios.

# backend/hangar/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Fleet setup and inspection:
# - python -m flask fleet add-aircraft --tail CC-AQI --model "Cessna 172" --hobbs 1200.5 --tach 980.2
#   Register an aircraft with its current meter readings.
# - python -m flask fleet add-component --aircraft-id 1 --type ENGINE --hours 350 --tbo 2000
#   Add a tracked component (one per type per aircraft).
# - python -m flask fleet add-pilot --name "Ana Rojas" --email ana@club.cl --rate 150000 [--admin]
#   Create a pilot (or administrator) account.
# - python -m flask fleet list
#   List aircraft with counters and components.
#
# Submissions:
# - python -m flask submissions process 42
#   Run OCR and the confidence gate on a PENDIENTE submission.
# - python -m flask submissions status 42
#   Print a submission with its images and flight.
# - python -m flask submissions approve 42 --actor-id 1 [--rate 150000]
#   Approve the counters a pilot typed in.
#
# Overhauls:
# - python -m flask overhaul register --actor-id 1 --aircraft-id 1 --component-id 2 --type ENGINE --hours 1500 --date 2026-02-10
#   Anchor an overhaul and recompute later flight snapshots.
# - python -m flask overhaul resume 7 --actor-id 1
#   Resume an interrupted snapshot backfill.
# - python -m flask overhaul list --aircraft-id 1
#   Show overhaul anchors and hours since overhaul.
#
# Ratios:
# - python -m flask ratios show --aircraft-id 1 [--tach-delta 1.2]
#   Print the Hobbs/Tach ratio table and, optionally, a prediction.

import json

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Aircraft, Component, User
from .models.accounts import ROLE_ADMIN, ROLE_PILOT
from .models.fleet import COMPONENT_TYPES
from .services import overhaul_service, ratio_service, review_service, submission_service
from .validation import LedgerError, to_decimal


def _fail(message: str):
    click.echo(f"FAIL {message}")
    raise SystemExit(1)


def _echo_result(result: dict):
    if result.get("success"):
        click.echo("PASS " + json.dumps({k: v for k, v in result.items() if k != "success"}, default=str))
    else:
        _fail(f"{result.get('error_type')}: {result.get('error')}")


# =============================================================================
# SYSTEM COMMANDS
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left untouched."""
    db.create_all()
    click.echo("PASS Database tables ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask fleet add-aircraft' to start.")


# =============================================================================
# FLEET COMMANDS
# =============================================================================

@click.group('fleet')
def fleet_group():
    """Aircraft, component and pilot setup."""


@fleet_group.command('add-aircraft')
@click.option('--tail', 'tail_number', required=True, help='Tail number, e.g. CC-AQI')
@click.option('--model', default=None, help='Aircraft model')
@click.option('--hobbs', default="0", help='Current Hobbs reading')
@click.option('--tach', default="0", help='Current Tach reading')
@with_appcontext
def add_aircraft(tail_number, model, hobbs, tach):
    """Register an aircraft with its current meter readings."""
    if db.session.query(Aircraft).filter_by(tail_number=tail_number).first():
        _fail(f"Aircraft '{tail_number}' already exists")

    try:
        aircraft = Aircraft(
            tail_number=tail_number,
            model=model,
            current_hobbs=to_decimal(hobbs, "hobbs"),
            current_tach=to_decimal(tach, "tach"),
        )
    except LedgerError as e:
        _fail(str(e))
    db.session.add(aircraft)
    db.session.commit()
    click.echo(f"PASS Created aircraft: {aircraft.tail_number} (ID: {aircraft.id})")


@fleet_group.command('add-component')
@click.option('--aircraft-id', type=int, required=True, help='Aircraft ID')
@click.option('--type', 'component_type', type=click.Choice(COMPONENT_TYPES), required=True)
@click.option('--hours', default="0", help='Accumulated hours')
@click.option('--tbo', default=None, help='Time between overhauls')
@with_appcontext
def add_component(aircraft_id, component_type, hours, tbo):
    """Add a tracked component (one per type per aircraft)."""
    aircraft = db.session.get(Aircraft, aircraft_id)
    if not aircraft:
        _fail(f"Aircraft ID {aircraft_id} not found")

    existing = db.session.query(Component).filter_by(aircraft_id=aircraft_id, component_type=component_type).first()
    if existing:
        _fail(f"{aircraft.tail_number} already has a {component_type} component (ID: {existing.id})")

    try:
        component = Component(
            aircraft_id=aircraft_id,
            component_type=component_type,
            accumulated_hours=to_decimal(hours, "hours"),
            tbo_limit=to_decimal(tbo, "tbo", allow_none=True),
        )
    except LedgerError as e:
        _fail(str(e))
    db.session.add(component)
    db.session.commit()
    click.echo(f"PASS Created {component_type} component (ID: {component.id}) on {aircraft.tail_number}")


@fleet_group.command('add-pilot')
@click.option('--name', required=True, help='Full name')
@click.option('--email', required=True, help='Email address')
@click.option('--rate', default="0", help='Hourly rate charged to this pilot')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant the administrator role')
@with_appcontext
def add_pilot(name, email, rate, is_admin):
    """Create a pilot (or administrator) account."""
    if db.session.query(User).filter_by(email=email).first():
        _fail(f"User with email '{email}' already exists")

    try:
        user = User(
            name=name,
            email=email,
            role=ROLE_ADMIN if is_admin else ROLE_PILOT,
            hourly_rate=to_decimal(rate, "rate"),
            balance=Decimal("0"),
        )
    except LedgerError as e:
        _fail(str(e))
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.name} <{user.email}> role={user.role} (ID: {user.id})")


@fleet_group.command('list')
@with_appcontext
def list_fleet():
    """List aircraft with counters and components."""
    aircraft_list = db.session.query(Aircraft).order_by(Aircraft.tail_number).all()
    if not aircraft_list:
        click.echo("No aircraft found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Tail':<10} {'Model':<20} {'Hobbs':>10} {'Tach':>10}")
    click.echo("="*80)
    for aircraft in aircraft_list:
        click.echo(
            f"{aircraft.id:<5} {aircraft.tail_number:<10} {aircraft.model or '-':<20} "
            f"{aircraft.current_hobbs:>10} {aircraft.current_tach:>10}"
        )
        for component in aircraft.components:
            click.echo(f"      - {component.component_type:<10} {component.accumulated_hours} h (ID: {component.id})")
    click.echo("="*80 + "\n")


# =============================================================================
# SUBMISSION COMMANDS
# =============================================================================

@click.group('submissions')
def submissions_group():
    """Flight submission processing."""


@submissions_group.command('process')
@click.argument('submission_id', type=int)
@with_appcontext
def process_submission_cli(submission_id):
    """Run OCR and the confidence gate on a PENDIENTE submission."""
    try:
        submission = submission_service.process_submission(submission_id)
    except LedgerError as e:
        _fail(str(e))
    click.echo(f"PASS Submission {submission.id} -> {submission.estado}")
    if submission.error_message:
        click.echo(f"     {submission.error_message}")


@submissions_group.command('status')
@click.argument('submission_id', type=int)
@with_appcontext
def submission_status_cli(submission_id):
    """Print a submission with its images and flight."""
    try:
        status = submission_service.get_submission_status(submission_id)
    except LedgerError as e:
        _fail(str(e))
    click.echo(json.dumps(status, indent=2, default=str))


@submissions_group.command('approve')
@click.argument('submission_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator user ID')
@click.option('--rate', default=None, help='Hourly rate override')
@click.option('--instructor-rate', default=None, help='Instructor rate override')
@with_appcontext
def approve_submission_cli(submission_id, actor_id, rate, instructor_rate):
    """Approve the counters a pilot typed in and commit the flight."""
    _echo_result(review_service.approve_submission(
        submission_id=submission_id,
        admin_id=actor_id,
        rate=rate,
        instructor_rate=instructor_rate,
    ))


# =============================================================================
# OVERHAUL COMMANDS
# =============================================================================

@click.group('overhaul')
def overhaul_group():
    """Component overhaul registration and snapshot backfill."""


@overhaul_group.command('register')
@click.option('--actor-id', type=int, required=True, help='Administrator user ID')
@click.option('--aircraft-id', type=int, required=True, help='Aircraft ID')
@click.option('--component-id', type=int, required=True, help='Component ID')
@click.option('--type', 'component_type', type=click.Choice(COMPONENT_TYPES), required=True)
@click.option('--hours', required=True, help='Airframe hours at the overhaul')
@click.option('--date', 'overhaul_date', default=None, help='Overhaul date (ISO-8601)')
@click.option('--notes', default=None)
@click.option('--chunk-size', type=int, default=None, help='Flights per committed chunk')
@with_appcontext
def register_overhaul_cli(actor_id, aircraft_id, component_id, component_type, hours, overhaul_date, notes, chunk_size):
    """Anchor an overhaul and recompute later flight snapshots."""
    result = overhaul_service.register_overhaul(
        actor_user_id=actor_id,
        component_id=component_id,
        component_type=component_type,
        aircraft_id=aircraft_id,
        overhaul_airframe_hours=hours,
        overhaul_date=overhaul_date,
        notes=notes,
        chunk_size=chunk_size,
    )
    _echo_result(result)


@overhaul_group.command('resume')
@click.argument('job_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator user ID')
@click.option('--chunk-size', type=int, default=None, help='Flights per committed chunk')
@with_appcontext
def resume_overhaul_cli(job_id, actor_id, chunk_size):
    """Resume an interrupted snapshot backfill."""
    _echo_result(overhaul_service.resume_recalculation(actor_user_id=actor_id, job_id=job_id, chunk_size=chunk_size))


@overhaul_group.command('list')
@click.option('--aircraft-id', type=int, required=True, help='Aircraft ID')
@with_appcontext
def list_overhauls_cli(aircraft_id):
    """Show overhaul anchors and hours since overhaul."""
    try:
        rows = overhaul_service.list_component_overhauls(aircraft_id)
    except LedgerError as e:
        _fail(str(e))

    click.echo(f"{'ID':<5} {'Type':<10} {'Accum':>10} {'Anchor':>10} {'Since OH':>10} {'TBO':>10} {'To TBO':>10}")
    for row in rows:
        click.echo(
            f"{row['id']:<5} {row['component_type']:<10} {row['accumulated_hours']!s:>10} "
            f"{row['last_overhaul_airframe'] or '-'!s:>10} {row['hours_since_overhaul'] or '-'!s:>10} "
            f"{row['tbo_limit'] or '-'!s:>10} {row['hours_to_tbo'] or '-'!s:>10}"
        )


# =============================================================================
# RATIO COMMANDS
# =============================================================================

@click.group('ratios')
def ratios_group():
    """Hobbs/Tach ratio statistics."""


@ratios_group.command('show')
@click.option('--aircraft-id', type=int, required=True, help='Aircraft ID')
@click.option('--tach-delta', default=None, help='Also predict the Hobbs delta for this Tach delta')
@with_appcontext
def show_ratios_cli(aircraft_id, tach_delta):
    """Print the Hobbs/Tach ratio table and, optionally, a prediction."""
    table = ratio_service.calculate_hobbs_tach_ratios(aircraft_id)
    click.echo(f"Global ratio: {table.global_ratio:.3f}")
    if not table.bucket_stats:
        click.echo(f"No bucket has {ratio_service.MIN_BUCKET_SAMPLES}+ flights yet.")
    for bucket in sorted(table.bucket_stats):
        stats = table.bucket_stats[bucket]
        click.echo(f"  {bucket:<9} n={stats.count:<4} avg={stats.avg_ratio:.3f} median={stats.median:.3f}")

    if tach_delta is not None:
        try:
            prediction = ratio_service.predict_from_table(table, tach_delta)
        except LedgerError as e:
            _fail(str(e))
        click.echo(
            f"Tach {tach_delta} -> Hobbs {prediction['predicted_hobbs_delta']} "
            f"(ratio {prediction['ratio']}, bucket {prediction['bucket']}, {prediction['confidence']})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(fleet_group)
    app.cli.add_command(submissions_group)
    app.cli.add_command(overhaul_group)
    app.cli.add_command(ratios_group)
