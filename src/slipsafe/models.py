"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

# Import User first - other models have foreign keys to it
from slipsafe.modules.identity.models import User  # noqa: F401

from slipsafe.modules.audit.models import AuditEvent  # noqa: F401
from slipsafe.modules.claims.models import Claim  # noqa: F401
from slipsafe.modules.policy.models import MerchantRule  # noqa: F401
from slipsafe.modules.receipts.models import Receipt  # noqa: F401
from slipsafe.modules.verification.models import VerificationAttempt  # noqa: F401
