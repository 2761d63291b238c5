"""
Console harness for the saved case database

Simple console loop to list, search, inspect and delete saved cases
without the web layer.

Commands:
    list                      - all saved cases, newest first
    find <term>               - cases whose name or patient id contains term
    show <case id>            - notes, conflicts and dispositions of one case
    history <case id>         - audit trail of one case, newest first
    delete <case id>          - permanently delete a case
    demo                      - save the demo scenario as a new case
    quit
"""

import asyncio
import logging
import sys
from datetime import datetime

from handoff.core.case_session import CaseSession
from handoff.exceptions import HandoffError
from handoff.persistence import CaseStore, JsonFileMedium
from handoff.utils.case_search import active_risk_counts, filter_cases

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def format_time(timestamp_ms):
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M")


def print_case_row(case):
    risk = active_risk_counts(case)
    print(f"{case.id}  {case.name}")
    print(f"    saved {format_time(case.timestamp)} | {len(case.notes)} sources | "
          f"active risk H{risk['high']} M{risk['medium']} L{risk['low']}")


def print_case_detail(case):
    print_separator("-")
    print(case.name)
    print_separator("-")
    details = case.patient_details
    print(f"Patient: {details.id} {details.name} {details.age} {details.location} ({details.encounter_date})")

    print("\nSources:")
    for note in case.notes:
        print(f"  [{note.id}] {note.label} ({note.type.value}, {len(note.content)} chars)")

    if case.result is None:
        print("\nNo analysis result.")
        return

    print("\nConflicts:")
    for conflict in case.result.critical_conflicts:
        record = case.dismissed_flags.get(conflict.id)
        if record is None:
            state = "ACTIVE"
        elif record.resolution_source_id:
            state = f"RESOLVED -> {record.resolution_source_id}"
        else:
            state = f"DISMISSED ({record.reason.value})"
        print(f"  [{conflict.severity.value}] {conflict.id}: {conflict.description} - {state}")


def find_case(cases, case_id):
    for case in cases:
        if case.id == case_id:
            return case
    print(f"No case with id {case_id}")
    return None


def main(data_dir=None):
    """Run console harness"""
    print_separator()
    print("HANDOFF CASE DATABASE - CONSOLE")
    print_separator()

    try:
        store = CaseStore(JsonFileMedium(data_dir))
    except HandoffError as e:
        print(f"\nFailed to open case database: {e}")
        return 1

    session = CaseSession(store)

    while True:
        try:
            line = input("> ").strip()
            if not line:
                continue

            command, _, arg = line.partition(" ")
            arg = arg.strip()
            if command in ("quit", "exit"):
                break

            cases = asyncio.run(session.list_cases())

            if command == "list":
                print(f"{len(cases)} saved cases")
                for case in cases:
                    print_case_row(case)
            elif command == "find":
                for case in filter_cases(cases, term=arg):
                    print_case_row(case)
            elif command == "show":
                case = find_case(cases, arg)
                if case:
                    print_case_detail(case)
            elif command == "history":
                case = find_case(cases, arg)
                if case:
                    for event in reversed(case.history):
                        print(f"  {format_time(event.timestamp)}  {event.action}  {event.details or ''}")
            elif command == "delete":
                remaining = asyncio.run(session.delete_case(arg))
                print(f"{len(remaining)} cases remain")
            elif command == "demo":
                session.load_demo_scenario()
                saved = asyncio.run(session.save())
                print(f"Demo case saved as {saved.case_id}")
                session.reset()
            else:
                print(f"Unknown command: {command}")

        except (KeyboardInterrupt, EOFError):
            print("\n\nInterrupted by user")
            break

        except HandoffError as e:
            print(f"\nERROR: {e}")

    print_separator()
    print("Console session complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else None))
