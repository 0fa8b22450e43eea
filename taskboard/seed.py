from __future__ import annotations

import asyncio
import logging
import secrets

from sqlalchemy import or_, select

from taskboard.config import settings
from taskboard.db import SessionLocal, engine
from taskboard.models import User
from taskboard.security import hash_password

logger = logging.getLogger(__name__)


def _bootstrap_password() -> tuple[str, bool]:
  configured = (settings.seed_admin_password or "").strip()
  if configured:
    return configured, False
  return secrets.token_urlsafe(14), True


async def seed() -> bool:
  """Create the admin account if neither its email nor username is taken. Returns True when created."""
  async with SessionLocal() as db:
    res = await db.execute(
      select(User.id).where(or_(User.email == settings.seed_admin_email, User.username == settings.seed_admin_username))
    )
    if res.first():
      logger.info("admin %s already present, nothing to seed", settings.seed_admin_email)
      return False

    password, generated = _bootstrap_password()
    db.add(
      User(
        username=settings.seed_admin_username,
        email=settings.seed_admin_email,
        password_hash=hash_password(password),
        role="admin",
      )
    )
    await db.commit()

  if generated:
    print("Taskboard admin created:")
    print(f"  {settings.seed_admin_email}={password} (generated=true)")
  else:
    logger.info("admin %s created", settings.seed_admin_email)
  return True


async def _main() -> None:
  try:
    await seed()
  finally:
    await engine.dispose()


def main() -> None:
  logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
  asyncio.run(_main())


if __name__ == "__main__":
  main()
