"""
Fundi API Route Blueprints
"""
from .job_codes import job_codes_bp
from .jobs import jobs_bp
from .payments import payments_bp
from .splits import splits_bp
from .payouts import payouts_bp

__all__ = [
    "job_codes_bp",
    "jobs_bp",
    "payments_bp",
    "splits_bp",
    "payouts_bp",
]
