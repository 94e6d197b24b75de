"""Storage key names shared across components."""

# Durable store ("localStorage")
DURABLE_ACCESS_TOKEN = "LMS_access_token"
DURABLE_STUDENT_ID = "LMS_StudentId"
DURABLE_COURSE_ID = "LMS_CourseId"
DURABLE_BATCH_ID = "LMS_BatchId"
DURABLE_EMAIL = "LMS_Email"
DURABLE_NAME = "LMS_Name"
DURABLE_PICTURE = "LMS_Picture"
DURABLE_TIMESTAMP = "LMS_timestamp"
DURABLE_LAST_ACTIVITY = "LMS_lastActivityTime"

# Session store ("sessionStorage")
SESSION_ACCESS_TOKEN = "access_token"
SESSION_STUDENT_ID = "StudentId"
SESSION_COURSE_ID = "CourseId"
SESSION_BATCH_ID = "BatchId"
SESSION_EMAIL = "Email"
SESSION_NAME = "Name"
SESSION_PICTURE = "Picture"
SESSION_TEST_ID = "TestId"

# Identity field -> (durable key, session key)
IDENTITY_KEYS: dict[str, tuple[str, str]] = {
    "student_id": (DURABLE_STUDENT_ID, SESSION_STUDENT_ID),
    "email": (DURABLE_EMAIL, SESSION_EMAIL),
    "name": (DURABLE_NAME, SESSION_NAME),
    "picture": (DURABLE_PICTURE, SESSION_PICTURE),
    "course_id": (DURABLE_COURSE_ID, SESSION_COURSE_ID),
    "batch_id": (DURABLE_BATCH_ID, SESSION_BATCH_ID),
}

DURABLE_IDENTITY_KEYS = tuple(durable for durable, _ in IDENTITY_KEYS.values())

# Everything removed from the durable store on logout or a 401/403
DURABLE_SESSION_KEYS = (
    DURABLE_ACCESS_TOKEN,
    *DURABLE_IDENTITY_KEYS,
    DURABLE_TIMESTAMP,
    DURABLE_LAST_ACTIVITY,
)
