"""
Alumni Registrations Module

Registration identity verification and approval workflow:
1. Intake with duplicate detection on five identity fields
2. Background identity verification against personnel records, with fuzzy
   name matching, retry backoff and a manual-review fallback
3. Admin approve / reject, single and bulk
4. Email verification moving approved registrations to active

Security Features:
- SHA-256 token hashing (tokens never stored in plain text)
- Database-enforced uniqueness of identity fields
- Optimistic concurrency on every status transition
- State machine validation for status transitions

Background Jobs (via APScheduler):
- Approval pass, on business-hours / off-hours / weekend cadences
"""

from .jobs import register_registration_jobs
from .router import router

__all__ = ["router", "register_registration_jobs"]
