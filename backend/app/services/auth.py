from datetime import datetime

from sqlmodel import Session, select

from app.models.admin import AdminUser
from app.models.client import Client
from app.schemas.auth import AdminLoginRequest, CustomerLoginRequest, Token
from app.utils.documents import normalize_email
from app.utils.security import TokenRole, create_access_token, verify_password


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def authenticate_customer(self, payload: CustomerLoginRequest) -> Token:
        statement = select(Client).where(Client.email == normalize_email(str(payload.email)))
        client = self.session.exec(statement).first()

        if not client or not client.cpf or client.cpf != payload.cpf:
            raise ValueError("Invalid credentials")

        return self._build_token(str(client.id), TokenRole.CLIENT)

    def authenticate_admin(self, payload: AdminLoginRequest) -> Token:
        statement = select(AdminUser).where(AdminUser.email == normalize_email(str(payload.email)))
        admin = self.session.exec(statement).first()

        if not admin or not admin.is_active:
            raise ValueError("Invalid credentials")

        if not verify_password(payload.password, admin.password_hash):
            raise ValueError("Invalid credentials")

        admin.last_login_at = datetime.utcnow()
        self.session.add(admin)
        self.session.commit()
        self.session.refresh(admin)

        return self._build_token(str(admin.id), TokenRole.ADMIN)

    def _build_token(self, subject: str, role: TokenRole) -> Token:
        access_token = create_access_token(subject, role)
        return Token(access_token=access_token, role=role.value, subject_id=subject)
