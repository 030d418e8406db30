# Authentication, sessions, lockout and role checks
