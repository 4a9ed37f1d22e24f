"""
Login for admins and technicians, admin seeding
"""

from typing import Any, Dict

from sqlalchemy.orm import Session

import config
from database.models import Admin, Technician, UserRole, utcnow
from utils.auth import verify_password, hash_password
from utils.errors import AuthError, ValidationError
from utils.logger import service_logger as logger


class UserService:
    """Resolves credentials to an identity {id, username, role}"""

    def __init__(self, db: Session):
        self.db = db

    def authenticate(self, role: str, username: str, password: str) -> Dict[str, Any]:
        """Check credentials for the given role"""
        if not username or not password:
            raise ValidationError("Username and password required")

        if role == UserRole.ADMIN.value:
            self.ensure_admin_seed()
            account = self.db.query(Admin).filter(Admin.username == username).first()
        elif role == UserRole.TECHNICIAN.value:
            account = self.db.query(Technician).filter(Technician.username == username).first()
        else:
            raise ValidationError("Unknown role")

        if not account or not verify_password(account.password_hash, password):
            logger.info("failed %s login for %s", role, username)
            raise AuthError("Invalid credentials")

        return {"id": str(account.id), "username": account.username, "role": role}

    def ensure_admin_seed(self) -> bool:
        """Create the default admin on first run; True when one was created"""
        if self.db.query(Admin).filter(Admin.username == config.ADMIN_USERNAME).first():
            return False

        admin = Admin(
            username=config.ADMIN_USERNAME,
            password_hash=hash_password(config.ADMIN_DEFAULT_PASSWORD),
            created_at=utcnow()
        )
        self.db.add(admin)
        self.db.commit()
        logger.info("default admin %s created", config.ADMIN_USERNAME)
        return True
