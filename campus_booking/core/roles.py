STUDENT = 'student'
TEACHER = 'teacher'
ADMIN = 'admin'
ROLES = (STUDENT, TEACHER, ADMIN)

PENDING = 'pending'
APPROVED = 'approved'
CANCELLED = 'cancelled'
APPOINTMENT_STATUSES = (PENDING, APPROVED, CANCELLED)
