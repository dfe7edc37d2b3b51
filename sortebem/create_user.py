# sortebem/create_user.py
# Prints the environment settings for the site administrator login.
# Usage: python -m sortebem.create_user admin@example.com

import getpass
import sys

from sortebem.encryption.password_hashing import PasswordHashingService


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("usage: python -m sortebem.create_user <email>")
        return 2
    email = argv[0].strip().lower()
    pwhash = PasswordHashingService()
    password = getpass.getpass("Site admin password: ")
    if not pwhash.is_acceptable_password(password):
        print(f"Password must have at least {pwhash.min_length} characters.")
        return 1
    print(f"SITE_ADMIN_EMAIL={email}")
    print(f"SITE_ADMIN_PASSWORD_HASH='{pwhash.hash_password(password)}'")
    return 0


if __name__ == '__main__':
    sys.exit(main())
