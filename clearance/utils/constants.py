"""Application-wide constants: the default catalog and login-guard limits."""

MAX_LOGIN_ATTEMPTS = 5
LOGIN_WINDOW_MINUTES = 15
LOCK_DURATION_MINUTES = 30
LOCK_REASON_TOO_MANY_ATTEMPTS = "Too many failed login attempts"
# Tracker rows idle for longer than this are pruned by the hourly job
LOGIN_ATTEMPT_RETENTION_HOURS = 24

CONFIRMATION_CODE_PREFIX = "CLR"
SYSTEM_ACTOR = "System"

WEBHOOK_SOURCE = "station_staff_interface"
WEBHOOK_VERSION = "1.0"

DEFAULT_CATALOG = [
    {
        "id": "calculator",
        "name": "Calculator",
        "category": "subject_materials",
        "description": "Scientific calculator issued for mathematics",
        "is_required": True,
        "requires_submission": True,
    },
    {
        "id": "mathematics_textbook",
        "name": "Mathematics Textbook",
        "category": "subject_materials",
        "description": "Mathematics course textbook",
        "is_required": True,
        "requires_submission": True,
    },
    {
        "id": "computer_science_textbook",
        "name": "Computer Science Textbook",
        "category": "subject_materials",
        "description": "Computer Science course textbook",
        "is_required": True,
        "requires_submission": True,
    },
    {
        "id": "physics_textbook",
        "name": "Physics Textbook",
        "category": "subject_materials",
        "description": "Physics course textbook",
        "is_required": True,
        "requires_submission": True,
    },
    {
        "id": "uniform",
        "name": "Uniform",
        "category": "other_requirements",
        "description": "School uniform items",
        "is_required": True,
        "requires_submission": True,
    },
    {
        "id": "sports_equipment",
        "name": "Sports Equipment",
        "category": "other_requirements",
        "description": "Any borrowed sports equipment",
        "is_required": True,
        "requires_submission": True,
    },
    {
        "id": "finance_clearance",
        "name": "Finance Clearance",
        "category": "finance",
        "description": "Outstanding tuition and fees",
        "is_required": True,
        "requires_submission": False,
    },
]
