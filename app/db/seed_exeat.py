"""
Seed the exeat roles and the default exeat categories.

Run once (idempotent; after schema_check):
  python -m app.db.seed_exeat

Optionally grant the admin role to an existing staff account:
  EXEAT_ADMIN_EMAIL=registry@school.edu python -m app.db.seed_exeat
"""
import asyncio
import os
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import ExeatRole, StaffExeatRole, User
from app.core.enums import ExeatRoleName, UserType
from app.core.models import ExeatCategory
from app.db.session import AsyncSessionLocal

DEFAULT_ROLES: List[Tuple[ExeatRoleName, str, str]] = [
    (ExeatRoleName.CMD, "Chief Medical Director", "Reviews medical exeat requests."),
    (ExeatRoleName.DEPUTY_DEAN, "Deputy Dean", "First review of non-medical exeat requests."),
    (ExeatRoleName.DEAN, "Dean of Students", "Final review and parent consent; may act at any stage."),
    (ExeatRoleName.DEAN2, "Assistant Dean", "Covers the CMD, deputy dean and dean reviews."),
    (ExeatRoleName.HOSTEL_ADMIN, "Hostel Admin", "Signs students out of and back into the hostel."),
    (ExeatRoleName.SECURITY, "Security", "Signs students out of and back into campus."),
    (ExeatRoleName.ADMIN, "Administrator", "Manages exeat roles; may act at any stage."),
]

DEFAULT_CATEGORIES: List[Tuple[str, str, bool]] = [
    ("Medical", "Leave for medical treatment or checkup.", True),
    ("Home Visit", "Visit to parents or guardians.", False),
    ("Official Assignment", "Leave on school business.", False),
    ("Emergency", "Family or personal emergency.", False),
    ("Other", "Any other reason.", False),
]


async def seed_roles(db: AsyncSession) -> None:
    existing = set((await db.execute(select(ExeatRole.name))).scalars().all())
    for role, display_name, description in DEFAULT_ROLES:
        if role.value in existing:
            continue
        db.add(ExeatRole(name=role.value, display_name=display_name, description=description))
        print("Created exeat role:", role.value)
    await db.flush()


async def seed_categories(db: AsyncSession) -> None:
    existing = set((await db.execute(select(ExeatCategory.name))).scalars().all())
    for name, description, is_medical in DEFAULT_CATEGORIES:
        if name in existing:
            continue
        db.add(ExeatCategory(name=name, description=description, is_medical=is_medical))
        print("Created exeat category:", name)
    await db.flush()


async def grant_admin(db: AsyncSession, email: str) -> None:
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if not user or user.user_type != UserType.STAFF.value:
        print("No staff account for", email, "; skipping admin grant.")
        return
    role = (
        await db.execute(select(ExeatRole).where(ExeatRole.name == ExeatRoleName.ADMIN.value))
    ).scalar_one()
    held = (
        await db.execute(
            select(StaffExeatRole).where(
                StaffExeatRole.staff_id == user.id,
                StaffExeatRole.exeat_role_id == role.id,
            )
        )
    ).scalar_one_or_none()
    if held:
        print("Staff already holds admin:", email)
        return
    db.add(StaffExeatRole(staff_id=user.id, exeat_role_id=role.id))
    print("Granted admin role to:", email)


async def seed_exeat(db: AsyncSession) -> None:
    await seed_roles(db)
    await seed_categories(db)
    admin_email = os.environ.get("EXEAT_ADMIN_EMAIL")
    if admin_email:
        await grant_admin(db, admin_email)
    await db.commit()
    print("Exeat seed done.")


async def main() -> None:
    async with AsyncSessionLocal() as db:
        try:
            await seed_exeat(db)
        except Exception as e:
            await db.rollback()
            print("Error:", e)
            raise


if __name__ == "__main__":
    asyncio.run(main())
