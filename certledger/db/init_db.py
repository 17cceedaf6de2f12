# certledger/db/init_db.py
import logging
import os

from sqlalchemy import select
from sqlalchemy.orm import Session

from certledger.core.rbac import ROLE_NAMES, ROLE_ADMIN
from certledger.core.security import hash_password
from certledger.models.certificate_type import CertificateType
from certledger.models.role import Role
from certledger.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_CERTIFICATE_TYPES = [
    {
        "name": "honor-roll",
        "description": "Academic honor roll",
        "achievement_schema": {
            "required": ["gpa"],
            "properties": {
                "gpa": {"type": "number", "minimum": 0, "maximum": 4},
                "term": {"type": "string"},
            },
        },
    },
    {
        "name": "course-completion",
        "description": "Completion of a course",
        "achievement_schema": {
            "required": ["course", "completed_on"],
            "properties": {
                "course": {"type": "string"},
                "completed_on": {"type": "string"},
                "grade": {"type": "string"},
                "hours": {"type": "number", "minimum": 0},
            },
        },
    },
    {
        "name": "graduation",
        "description": "Degree conferral",
        "achievement_schema": {
            "required": ["degree", "major", "graduation_date"],
            "properties": {
                "degree": {"type": "string"},
                "major": {"type": "string"},
                "graduation_date": {"type": "string"},
                "honors": {"type": "string"},
            },
        },
    },
]


def init_db(db: Session) -> None:
    roles = {r.name: r for r in db.scalars(select(Role)).all()}
    for name in ROLE_NAMES:
        if name not in roles:
            r = Role(name=name)
            db.add(r); db.flush()
            roles[name] = r

    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.org").lower()
    admin = db.scalar(select(User).where(User.email == admin_email))
    if not admin:
        admin = User(
            name="Administrator",
            email=admin_email,
            hashed_password=hash_password(os.getenv("ADMIN_PASSWORD", "admin123")),
            status="active",
        )
        db.add(admin); db.flush()
        admin.roles.append(roles[ROLE_ADMIN])
        logger.info("seeded admin user %s", admin_email)

    existing = {t.name for t in db.scalars(select(CertificateType)).all()}
    for entry in DEFAULT_CERTIFICATE_TYPES:
        if entry["name"] not in existing:
            db.add(CertificateType(active=True, **entry))

    db.commit()
