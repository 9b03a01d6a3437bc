"""Certification catalog administration."""

from __future__ import annotations

import logging

from muster.core.errors import ConflictError, ValidationError
from muster.db.models import CertificationRow
from muster.db.repository import Repository
from muster.models.requests import CertificationItem

logger = logging.getLogger(__name__)


def certification_item(row: CertificationRow) -> CertificationItem:
    return CertificationItem(id=row.id, name=row.name, description=row.description or "")


async def create_certification(
    repo: Repository, name: str, description: str = ""
) -> CertificationItem:
    name = name.strip()
    if not name:
        raise ValidationError("Certification name is required.")
    if await repo.get_certification_by_name(name) is not None:
        raise ConflictError(f"A certification named **{name}** already exists.")
    row = await repo.create_certification(name, description.strip())
    logger.info("certification_created cert=%s", row.id)
    return certification_item(row)


async def get_certification(repo: Repository, cert_id: str) -> CertificationItem:
    row = await repo.get_certification(cert_id)
    if row is None:
        raise ValidationError(f"No certification found with ID `{cert_id}`.")
    return certification_item(row)


async def edit_certification(
    repo: Repository,
    cert_id: str,
    name: str | None = None,
    description: str | None = None,
) -> CertificationItem:
    row = await repo.get_certification(cert_id)
    if row is None:
        raise ValidationError(f"No certification found with ID `{cert_id}`.")
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Certification name cannot be empty.")
        clash = await repo.get_certification_by_name(name)
        if clash is not None and clash.id != cert_id:
            raise ConflictError(f"A certification named **{name}** already exists.")
    await repo.update_certification(cert_id, name=name, description=description)
    logger.info("certification_edited cert=%s", cert_id)
    return await get_certification(repo, cert_id)


async def delete_certification(repo: Repository, cert_id: str) -> CertificationItem:
    """Delete a certification and every request for it."""
    row = await repo.get_certification(cert_id)
    if row is None:
        raise ValidationError(f"No certification found with ID `{cert_id}`.")
    item = certification_item(row)
    await repo.delete_certification(cert_id)
    logger.info("certification_deleted cert=%s", cert_id)
    return item


async def list_certifications(repo: Repository) -> list[CertificationItem]:
    return [certification_item(row) for row in await repo.get_certifications()]
