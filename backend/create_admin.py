# create_admin.py
# Uso: python create_admin.py <email> <senha> ["Nome completo"]
# Exemplo: python create_admin.py admin@unipet.com.br "MinhaSenhaForte123!" "Administrador"
# Usa DATABASE_URL do ambiente (ou do .env) via app.core.config.

import sys

from sqlmodel import Session, select

from app.db.session import engine, init_db
from app.models.admin import AdminUser
from app.utils.documents import normalize_email
from app.utils.security import get_password_hash

if len(sys.argv) < 3:
    raise SystemExit("Uso: python create_admin.py <email> <senha> [nome]")

email = normalize_email(sys.argv[1])
plain_password = sys.argv[2]
full_name = sys.argv[3] if len(sys.argv) > 3 else "Administrador"

if len(plain_password) < 8:
    raise SystemExit("A senha precisa ter pelo menos 8 caracteres.")

init_db()
with Session(engine) as session:
    admin = session.exec(select(AdminUser).where(AdminUser.email == email)).first()
    if admin:
        admin.password_hash = get_password_hash(plain_password)
        admin.is_active = True
        admin.touch()
        action = "atualizado"
    else:
        admin = AdminUser(email=email, full_name=full_name, password_hash=get_password_hash(plain_password))
        action = "criado"
    session.add(admin)
    session.commit()
    session.refresh(admin)
    print(f"Administrador {email} {action} (id={admin.id}).")
