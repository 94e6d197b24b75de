"""
lms-companion: session and progression core for an LMS client.

Subpackages:
    core   - stores, vault, session envelope, cache, scheduler, navigation
    study  - idle monitor, subtask progression gate, timed-test clock
    cli    - the ``lms`` command
"""

__version__ = "0.1.0"
