"""
Interactive consent console for CareBridge patients.
Review doctors' access requests and active consents, then approve, deny or
revoke them by number.
"""

from getpass import getpass
from typing import Any, Dict, List

from carebridge.access import decide, patient_grants, revoke
from carebridge.database import init_engine, session_scope
from carebridge.errors import PortalError, ValidationError
from carebridge.models import Role
from carebridge.rbac import authenticate, load_auth_context, require_role

HELP = """Commands:
  list                 show requests and consents
  approve N [DAYS]     approve request N, optionally expiring after DAYS
  deny N               deny request N
  revoke N             revoke consent or request N
  quit                 exit"""


def _print_grants(listing: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Print pending requests then active consents; return them in numbered order."""
    numbered = listing["pendingRequests"] + listing["activeConsents"]

    print("\n[Pending requests]")
    if not listing["pendingRequests"]:
        print("(none)")
    for n, grant in enumerate(listing["pendingRequests"], start=1):
        doctor = grant["doctor"]
        print(f"  {n}. {doctor['name']} <{doctor['email']}> requested {grant['requestedAt']}")

    print("\n[Active consents]")
    if not listing["activeConsents"]:
        print("(none)")
    offset = len(listing["pendingRequests"])
    for n, grant in enumerate(listing["activeConsents"], start=offset + 1):
        doctor = grant["doctor"]
        expiry = grant["expiresAt"] or "no expiry"
        print(f"  {n}. {doctor['name']} <{doctor['email']}> until {expiry}")

    return numbered


def _pick(numbered: List[Dict[str, Any]], raw: str) -> Dict[str, Any]:
    try:
        index = int(raw)
    except ValueError:
        raise ValidationError(f"'{raw}' is not a number")
    if not 1 <= index <= len(numbered):
        raise ValidationError(f"No entry numbered {index}")
    return numbered[index - 1]


def main(engine=None):
    print("=== CareBridge: Patient Consent Console ===\n")

    if engine is None:
        engine = init_engine()

    # ── Login ────────────────────────────────────────────────────────
    try:
        email = input("Email (or 'quit'): ").strip()
        if not email or email.lower() in {"quit", "exit"}:
            print("Goodbye.")
            return
        password = getpass("Password: ")
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    try:
        with session_scope(engine) as session:
            user = authenticate(session, email, password)
            ctx = require_role(load_auth_context(session, {"user_id": user.id}), Role.PATIENT)
    except PortalError as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e.message)
        return

    print(f"\n[auth] Logged in as: {ctx.name} <{ctx.email}>")
    print(HELP)

    with session_scope(engine) as session:
        numbered = _print_grants(patient_grants(session, ctx.user_id))

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            line = input("\nconsent> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not line:
            continue
        command, *args = line.split()
        command = command.lower()
        if command in {"quit", "exit"}:
            print("Goodbye.")
            break
        if command in {"help", "?"}:
            print(HELP)
            continue

        try:
            with session_scope(engine) as session:
                if command == "list":
                    pass
                elif command in {"approve", "deny", "revoke"} and args:
                    grant = _pick(numbered, args[0])
                    if command == "revoke":
                        updated = revoke(session, ctx.user_id, grant["id"])
                    else:
                        decision = "APPROVED" if command == "approve" else "DENIED"
                        days = args[1] if command == "approve" and len(args) > 1 else None
                        updated = decide(session, ctx.user_id, grant["id"], decision, days)
                    print(f"[access] {grant['doctor']['name']}: {updated.status}")
                else:
                    print(f"Unknown command: {line}")
                    print(HELP)
                    continue
                numbered = _print_grants(patient_grants(session, ctx.user_id))
        except PortalError as e:
            print("\n[ERROR]", e.message)


if __name__ == "__main__":
    main()
