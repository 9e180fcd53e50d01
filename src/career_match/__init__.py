"""
Career Match: adaptive job matching and throttled application dispatch.

Scores job postings against a user's profile, learns per-user weights from
approve/reject feedback, and drives approved applications through a throttled,
at-most-once delivery lifecycle.
"""

__version__ = "0.1.0"
