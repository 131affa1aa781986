"""Issue a bearer token for the availability admin API.

Usage:
    python -m tutor_scheduler.print_admin_token <admin-email> [minutes]

The email must be listed in ADMIN_EMAILS. Tokens are signed with
JWT_SECRET_KEY and expire after JWT_EXPIRES_MINUTES unless minutes is given.
"""
import sys

from tutor_scheduler.auth.jwt_handler import create_admin_token
from tutor_scheduler.core import config


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    if not argv or len(argv) > 2:
        print(__doc__.strip(), file=sys.stderr)
        sys.exit(1)

    email = argv[0].strip().lower()
    if email not in config.ADMIN_EMAILS:
        print(f"{email} is not listed in ADMIN_EMAILS.", file=sys.stderr)
        sys.exit(1)

    expires_minutes = None
    if len(argv) == 2:
        try:
            expires_minutes = int(argv[1])
        except ValueError:
            expires_minutes = 0
        if expires_minutes <= 0:
            print("minutes must be a positive whole number.", file=sys.stderr)
            sys.exit(1)

    print(create_admin_token(email, expires_minutes=expires_minutes))


if __name__ == "__main__":
    main()
