"""
Main Execution Script for the Home-Care Planner.

Loads a JSON dataset into an InMemoryStore, then runs whichever operations
were requested: weekly plan generation (and confirmation), a single
availability check, and gap-fill suggestions for one staff member.
"""

import argparse
import json
import logging
import sys
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from homecare_scheduler import (
    ConflictResolver,
    InMemoryStore,
    SchedulingValidationError,
    SuggestionEngine,
    WeeklyPlanGenerator,
    load_policy,
)

logger = logging.getLogger("Main")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )


def load_dataset(filename: str) -> Optional[InMemoryStore]:
    """Read a JSON dataset and re-hydrate it into a store. None on failure."""
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.error(f"❌ Dataset {filename} not found or invalid: {e}")
        return None

    store = InMemoryStore.from_dict(data)
    logger.info(
        f"📂 Loaded {len(store.staff)} staff, {len(store.patients)} patients, "
        f"{len(store.requirements)} requirements, {len(store.appointments)} appointments from {filename}"
    )
    return store


def print_plan_report(stats: Dict[str, Any], advisories: List[str]) -> None:
    print("\n" + "=" * 50)
    print("📊 WEEKLY PLAN REPORT")
    print("=" * 50)
    print(f"Week starting:        {stats['week_start']}")
    print(f"Visits placed:        {stats['total_visits']}")
    print(f"Office blocks:        {stats['total_office_blocks']}")
    print(f"Placed by priority:   {stats['placements_by_priority']}")
    print(f"Unscheduled:          {stats['unscheduled_by_priority']}")

    for staff in stats['staff']:
        hours, minutes = divmod(staff['total_work_minutes'], 60)
        print(f"\n👤 {staff['staff_name']} ({staff['role']}), day off {staff['day_off']}")
        print(f"   {hours}h{minutes:02d}m work, {staff['total_visits']} visits over {staff['working_days']} days")

    if advisories:
        print(f"\n🔍 ADVISORIES ({len(advisories)})")
        for advisory in advisories:
            print(f"   - {advisory}")


def export_results(payload: Dict[str, Any], filename: str) -> None:
    logger.info(f"💾 Exporting results to {filename}...")
    with open(filename, 'w') as f:
        json.dump(payload, f, indent=2)
    logger.info("✅ Export complete.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Home-care weekly planner")
    parser.add_argument("dataset", help="JSON dataset (staff, patients, availability, ...)")
    parser.add_argument("--week", type=date.fromisoformat, help="Monday of the week to plan")
    parser.add_argument("--policy", help="JSON file overriding scheduling policy defaults")
    parser.add_argument("--confirm", action="store_true", help="Confirm the generated plan")
    parser.add_argument("--check", nargs=4, metavar=("STAFF", "PATIENT", "ISO_DATETIME", "DURATION"),
                        help="Check availability of a single appointment")
    parser.add_argument("--suggest", nargs=3, metavar=("STAFF", "START", "END"),
                        help="Gap-fill suggestions for a staff member over a date range")
    parser.add_argument("--export", help="Write results as JSON to this file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    store = load_dataset(args.dataset)
    if store is None:
        return 1
    policy = load_policy(args.policy)

    payload: Dict[str, Any] = {}
    try:
        # --- PHASE 1: WEEKLY PLAN ---
        if args.week:
            generator = WeeklyPlanGenerator(store, policy, locks=store.locks)
            result = generator.generate_weekly_plan(args.week)
            print_plan_report(result.summary, result.advisories)

            plan = result.plan
            if args.confirm:
                plan = generator.confirm_plan(plan.id)
                print(f"\n🔒 Plan {plan.id} confirmed at {plan.confirmed_at}")

            payload["plan"] = plan.model_dump(mode='json')
            payload["advisories"] = result.advisories
            payload["summary"] = result.summary
            payload["appointments"] = [a.model_dump(mode='json') for a in store.appointments_for_plan(plan.id)]

        # --- PHASE 2: AVAILABILITY CHECK ---
        if args.check:
            staff_id, patient_id, when, duration = args.check
            check = ConflictResolver(store, policy, locks=store.locks).check_availability(
                int(staff_id), int(patient_id), datetime.fromisoformat(when), int(duration)
            )
            print(f"\n📅 Availability: {'✅ available' if check.is_available else '❌ conflicts'}")
            for conflict in check.conflicts:
                print(f"   - {conflict}")
            for alt in check.alternatives:
                print(f"   ↪ {alt.scheduled_at:%a %Y-%m-%d %H:%M}  {alt.confidence:.2f}  {alt.reason}")
            payload["availability"] = check.model_dump(mode='json')

        # --- PHASE 3: GAP-FILL SUGGESTIONS ---
        if args.suggest:
            staff_id, start, end = args.suggest
            suggestions = SuggestionEngine(store, policy).suggest_appointments(
                int(staff_id), date.fromisoformat(start), date.fromisoformat(end)
            )
            print(f"\n💡 {len(suggestions.suggestions)} suggestions for staff {staff_id}")
            for s in suggestions.suggestions:
                print(f"   {s.scheduled_at:%a %Y-%m-%d %H:%M}  {s.patient_name}  ({s.reason})")
            for u in suggestions.unscheduled_patients:
                print(f"   ⚠️ {u.patient_name}: {u.reason}")
            payload["suggestions"] = suggestions.model_dump(mode='json')

    except SchedulingValidationError as e:
        logger.error(f"❌ {e}")
        return 2

    if args.export:
        export_results(payload, args.export)
    return 0


if __name__ == "__main__":
    sys.exit(main())
