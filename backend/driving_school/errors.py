"""Domain errors raised by the test-taking core.

Routers let these propagate; the app turns them into HTTP responses.
"""


class DrivingSchoolError(Exception):
    """Base class for all domain errors."""

    status_code = 500


class ConfigurationError(DrivingSchoolError):
    """A test is set up in a way that cannot be taken or scored (e.g. no questions)."""

    status_code = 500


class InvalidAnswerError(DrivingSchoolError):
    """An answer names an unknown question or an option outside a/b/c."""

    status_code = 422


class TestLoadError(DrivingSchoolError):
    """The test or its questions could not be retrieved."""

    __test__ = False  # not a pytest class
    status_code = 404


class SessionStateError(DrivingSchoolError):
    """The operation is not allowed in the session's current phase."""

    status_code = 409


class SessionNotFoundError(DrivingSchoolError):
    status_code = 404


class SubmissionError(DrivingSchoolError):
    """Persisting a finished attempt failed."""

    status_code = 502


class DuplicateRecordError(DrivingSchoolError):
    """A unique field (e.g. a student's national ID) is already taken."""

    status_code = 400
