import uuid
from datetime import date, timedelta

import pytest

from complisite.core.enums import (
    CertificateStatus,
    OrgRole,
    ProjectMemberStatus,
    ProjectRole,
    Readiness,
    VerificationMethod,
)
from complisite.core.errors import AccessDenied, Conflict, NotFound, ValidationFailed
from complisite.db.models import UserCertificate
from complisite.services.certificates import (
    add_required_certificate,
    best_certificates,
    certificate_file_url,
    certificate_readiness,
    create_certificate,
    expiring_certificates,
    list_certificate_types,
    list_organization_certificates,
    list_user_certificates,
    project_readiness,
    reject_certificate,
    share_certificate,
    upload_certificate,
    verify_certificate,
    worker_readiness,
)

TODAY = date(2025, 3, 1)
WHITE_CARD = uuid.uuid4()
HEIGHTS = uuid.uuid4()


def cert(type_id=WHITE_CARD, expires_in=None, status=CertificateStatus.VERIFIED):
    expiry = TODAY + timedelta(days=expires_in) if expires_in is not None else None
    return UserCertificate(
        certificate_type_id=type_id,
        issue_date=date(2024, 1, 1),
        expiry_date=expiry,
        status=status,
    )


# ────────────────────────────────────────────────
# Readiness rules
# ────────────────────────────────────────────────
@pytest.mark.parametrize(
    "certificate, expected",
    [
        (None, Readiness.MISSING),
        (cert(status=CertificateStatus.REJECTED), Readiness.MISSING),
        (cert(status=CertificateStatus.SUSPENDED), Readiness.MISSING),
        (cert(status=CertificateStatus.EXPIRED), Readiness.EXPIRED),
        (cert(expires_in=-1), Readiness.EXPIRED),
        (cert(expires_in=0), Readiness.EXPIRING_SOON),
        (cert(expires_in=29), Readiness.EXPIRING_SOON),
        (cert(expires_in=30), Readiness.READY),
        (cert(), Readiness.READY),
        (cert(expires_in=400, status=CertificateStatus.PENDING_VERIFICATION), Readiness.READY),
    ],
)
def test_certificate_readiness(certificate, expected):
    assert certificate_readiness(certificate, TODAY, 30) is expected


def test_best_certificate_is_the_usable_one_that_expires_last():
    old = cert(expires_in=10)
    renewed = cert(expires_in=700)
    rejected = cert(expires_in=5000, status=CertificateStatus.REJECTED)
    no_expiry = cert(type_id=HEIGHTS)

    best = best_certificates([old, rejected, renewed, no_expiry], TODAY)
    assert best == {WHITE_CARD: renewed, HEIGHTS: no_expiry}


def test_valid_renewal_beats_a_later_dated_expired_certificate():
    stale = cert(expires_in=400, status=CertificateStatus.EXPIRED)
    undated_stale = cert(status=CertificateStatus.EXPIRED)
    renewal = cert(expires_in=200)

    assert best_certificates([stale, undated_stale, renewal], TODAY) == {WHITE_CARD: renewal}
    assert worker_readiness([WHITE_CARD], [stale, renewal], TODAY) is Readiness.READY
    assert worker_readiness([WHITE_CARD], [undated_stale, renewal], TODAY) is Readiness.READY
    # with nothing valid left the worker is still expired, not missing
    assert worker_readiness([WHITE_CARD], [stale, cert(expires_in=-5)], TODAY) is Readiness.EXPIRED


def test_worker_readiness_takes_the_worst_requirement():
    assert worker_readiness([], [], TODAY) is Readiness.READY
    assert worker_readiness([WHITE_CARD], [cert(expires_in=100)], TODAY) is Readiness.READY
    assert worker_readiness([WHITE_CARD], [cert(expires_in=-3)], TODAY) is Readiness.EXPIRED
    # missing outranks expired
    assert worker_readiness([WHITE_CARD, HEIGHTS], [cert(expires_in=-3)], TODAY) is Readiness.MISSING
    # a renewal replaces the expired certificate
    certs = [cert(expires_in=-3), cert(expires_in=10), cert(HEIGHTS, expires_in=300)]
    assert worker_readiness([WHITE_CARD, HEIGHTS], certs, TODAY) is Readiness.EXPIRING_SOON


# ────────────────────────────────────────────────
# Certificates
# ────────────────────────────────────────────────
async def test_create_certificate_starts_pending(db, factory):
    worker = await factory.user()
    org = await factory.organization()
    await factory.member(org, worker)
    white_card = await factory.certificate_type()

    view = await create_certificate(db, worker.id, white_card.id, date(2024, 5, 1), certificate_number="WC-1")
    assert view.status is CertificateStatus.PENDING_VERIFICATION
    assert view.certificate_type.name == "White Card"
    assert view.user_id == worker.id


async def test_create_certificate_validates_dates_and_type(db, factory):
    worker = await factory.user()
    white_card = await factory.certificate_type()
    with pytest.raises(ValidationFailed):
        await create_certificate(db, worker.id, white_card.id, date(2024, 5, 1), expiry_date=date(2024, 4, 1))
    with pytest.raises(NotFound):
        await create_certificate(db, worker.id, uuid.uuid4(), date(2024, 5, 1))


async def test_user_certificates_are_ordered_by_expiry(db, factory):
    worker = await factory.user()
    white_card = await factory.certificate_type()
    heights = await factory.certificate_type("Working at Heights", "high-risk")
    forever = await factory.certificate(worker, white_card)
    later = await factory.certificate(worker, heights, expiry_date=date(2027, 1, 1))
    sooner = await factory.certificate(worker, heights, expiry_date=date(2026, 1, 1))

    assert [c.id for c in await list_user_certificates(db, worker.id)] == [sooner.id, later.id, forever.id]


async def test_certificate_types_are_listed_by_category(db, factory):
    await factory.certificate_type("White Card", "induction")
    await factory.certificate_type("Forklift", "high-risk")
    assert [t.name for t in await list_certificate_types(db)] == ["Forklift", "White Card"]


async def _holder_and_manager(factory, manager_role=OrgRole.MANAGER):
    org = await factory.organization()
    holder = await factory.user(full_name="Alex Chen")
    manager = await factory.user()
    await factory.member(org, holder, OrgRole.WORKER)
    await factory.member(org, manager, manager_role)
    return org, holder, manager


async def test_manager_verifies_a_member_certificate(db, factory):
    _, holder, manager = await _holder_and_manager(factory)
    white_card = await factory.certificate_type()
    pending = await factory.certificate(holder, white_card, status=CertificateStatus.PENDING_VERIFICATION)

    view = await verify_certificate(db, manager.id, pending.id, VerificationMethod.MANUAL)
    assert view.status is CertificateStatus.VERIFIED
    assert view.verified_by == manager.id
    assert view.verified_at is not None
    assert view.verification_method is VerificationMethod.MANUAL


async def test_verification_is_denied_to_self_workers_and_other_orgs(db, factory):
    org, holder, _ = await _holder_and_manager(factory)
    white_card = await factory.certificate_type()
    pending = await factory.certificate(holder, white_card, status=CertificateStatus.PENDING_VERIFICATION)

    coworker = await factory.user()
    await factory.member(org, coworker, OrgRole.WORKER)
    elsewhere = await factory.user()
    await factory.member(await factory.organization(name="Other"), elsewhere, OrgRole.ADMIN)

    for actor in (holder, coworker, elsewhere):
        with pytest.raises(AccessDenied):
            await verify_certificate(db, actor.id, pending.id)


async def test_reject_requires_a_reason(db, factory):
    _, holder, manager = await _holder_and_manager(factory, OrgRole.ADMIN)
    white_card = await factory.certificate_type()
    pending = await factory.certificate(holder, white_card, status=CertificateStatus.PENDING_VERIFICATION)

    with pytest.raises(ValidationFailed):
        await reject_certificate(db, manager.id, pending.id, "   ")

    view = await reject_certificate(db, manager.id, pending.id, " Photo is unreadable ")
    assert view.status is CertificateStatus.REJECTED
    assert view.rejection_reason == "Photo is unreadable"


async def test_share_rules(db, factory):
    org, holder, manager = await _holder_and_manager(factory)
    project = await factory.project(org)
    white_card = await factory.certificate_type()
    card = await factory.certificate(holder, white_card)

    share = await share_certificate(db, holder.id, card.id, organization_id=org.id)
    assert share.shared_by == holder.id
    with pytest.raises(Conflict):
        await share_certificate(db, holder.id, card.id, organization_id=org.id)

    with pytest.raises(ValidationFailed):
        await share_certificate(db, holder.id, card.id, organization_id=org.id, project_id=project.id)
    with pytest.raises(ValidationFailed):
        await share_certificate(db, holder.id, card.id)
    with pytest.raises(AccessDenied):
        await share_certificate(db, manager.id, card.id, organization_id=org.id)
    # Workers are not project members until added
    with pytest.raises(AccessDenied):
        await share_certificate(db, holder.id, card.id, project_id=project.id)

    await factory.project_member(project, holder)
    project_share = await share_certificate(db, holder.id, card.id, project_id=project.id)
    assert project_share.shared_with_project_id == project.id


async def test_organization_certificates_for_managers_only(db, factory):
    org, holder, manager = await _holder_and_manager(factory)
    white_card = await factory.certificate_type()
    await factory.certificate(holder, white_card)

    [view] = await list_organization_certificates(db, manager.id, org.id)
    assert view.user.full_name == "Alex Chen"
    with pytest.raises(AccessDenied):
        await list_organization_certificates(db, holder.id, org.id)


async def test_expiring_certificates_window(db, factory):
    org, holder, manager = await _holder_and_manager(factory)
    white_card = await factory.certificate_type()
    soon = await factory.certificate(holder, white_card, expiry_date=TODAY + timedelta(days=20))
    await factory.certificate(holder, white_card, expiry_date=TODAY + timedelta(days=200))
    await factory.certificate(holder, white_card, expiry_date=TODAY - timedelta(days=1))
    await factory.certificate(
        holder, white_card, expiry_date=TODAY + timedelta(days=10), status=CertificateStatus.PENDING_VERIFICATION
    )

    expiring = await expiring_certificates(db, manager.id, org.id, today=TODAY)
    assert [c.id for c in expiring] == [soon.id]
    assert await expiring_certificates(db, manager.id, org.id, days_ahead=7, today=TODAY) == []


# ────────────────────────────────────────────────
# Files
# ────────────────────────────────────────────────
async def test_upload_stores_the_scan_and_records_it(db, factory, storage, fake_storage):
    worker = await factory.user()
    white_card = await factory.certificate_type()

    view = await upload_certificate(
        db, storage, worker.id, white_card.id, date(2024, 5, 1), "white card.pdf", b"%PDF-1.7", "application/pdf"
    )
    assert view.file_path.startswith(f"{worker.id}/")
    assert view.file_path.endswith("_white card.pdf")
    assert view.file_size == 8
    assert fake_storage.objects["certificates"][view.file_path] == b"%PDF-1.7"

    url = await certificate_file_url(db, storage, worker.id, view.id, expires_in=60)
    assert "/object/sign/certificates/" in url


async def test_upload_removes_the_file_when_recording_fails(db, factory, storage, fake_storage):
    worker = await factory.user()
    with pytest.raises(NotFound):
        await upload_certificate(
            db, storage, worker.id, uuid.uuid4(), date(2024, 5, 1), "card.png", b"\x89PNG", "image/png"
        )
    assert fake_storage.objects["certificates"] == {}


@pytest.mark.parametrize(
    "content, content_type",
    [(b"MZ", "application/x-msdownload"), (b"", "application/pdf")],
)
async def test_upload_rejects_bad_files_before_storing(db, factory, storage, fake_storage, content, content_type):
    worker = await factory.user()
    white_card = await factory.certificate_type()
    with pytest.raises(ValidationFailed):
        await upload_certificate(
            db, storage, worker.id, white_card.id, date(2024, 5, 1), "card", content, content_type
        )
    assert fake_storage.requests == []


async def test_file_links_for_holder_and_verifiers_only(db, factory, storage):
    org, holder, manager = await _holder_and_manager(factory)
    white_card = await factory.certificate_type()
    view = await upload_certificate(
        db, storage, holder.id, white_card.id, date(2024, 5, 1), "card.jpg", b"jpeg", "image/jpeg"
    )

    assert await certificate_file_url(db, storage, manager.id, view.id)
    outsider = await factory.user()
    with pytest.raises(AccessDenied):
        await certificate_file_url(db, storage, outsider.id, view.id)

    paperless = await factory.certificate(holder, white_card)
    with pytest.raises(NotFound):
        await certificate_file_url(db, storage, holder.id, paperless.id)


# ────────────────────────────────────────────────
# Project readiness
# ────────────────────────────────────────────────
async def test_required_certificates_are_managed_by_project_managers(db, factory):
    org, holder, manager = await _holder_and_manager(factory)
    project = await factory.project(org)
    white_card = await factory.certificate_type()

    await add_required_certificate(db, manager.id, project.id, white_card.id)
    with pytest.raises(Conflict):
        await add_required_certificate(db, manager.id, project.id, white_card.id)
    with pytest.raises(NotFound):
        await add_required_certificate(db, manager.id, project.id, uuid.uuid4())
    with pytest.raises(AccessDenied):
        await add_required_certificate(db, holder.id, project.id, white_card.id)


async def test_project_readiness_per_member(db, factory):
    org, holder, manager = await _holder_and_manager(factory)
    project = await factory.project(org)
    white_card = await factory.certificate_type()
    heights = await factory.certificate_type("Working at Heights", "high-risk")
    await factory.requirement(project, white_card)
    await factory.requirement(project, heights)

    ready = await factory.user(full_name="Ready Rita")
    expiring = await factory.user(full_name="Soon Sam")
    lapsed = await factory.user()
    left = await factory.user(full_name="Former Fred")
    for user in (ready, expiring, lapsed, holder):
        await factory.project_member(project, user, ProjectRole.MEMBER)
    await factory.project_member(project, left, status=ProjectMemberStatus.REVOKED)

    await factory.certificate(ready, white_card)
    await factory.certificate(ready, heights, expiry_date=TODAY + timedelta(days=365))
    await factory.certificate(expiring, white_card)
    await factory.certificate(expiring, heights, expiry_date=TODAY + timedelta(days=5))
    await factory.certificate(lapsed, white_card, expiry_date=TODAY - timedelta(days=1))
    await factory.certificate(lapsed, heights)
    await factory.certificate(holder, white_card)

    results = {r.userId: r for r in await project_readiness(db, manager.id, project.id, today=TODAY)}
    assert set(results) == {ready.id, expiring.id, lapsed.id, holder.id}
    assert results[ready.id].readiness is Readiness.READY
    assert results[expiring.id].readiness is Readiness.EXPIRING_SOON
    assert results[lapsed.id].readiness is Readiness.EXPIRED
    assert results[holder.id].readiness is Readiness.MISSING
    assert results[lapsed.id].userName == "Unknown"
    assert [t.name for t in results[ready.id].requiredCertificates] == ["White Card", "Working at Heights"]
    assert len(results[ready.id].userCertificates) == 2


async def test_everyone_is_ready_without_requirements(db, factory):
    org, holder, manager = await _holder_and_manager(factory)
    project = await factory.project(org)
    await factory.project_member(project, holder)

    [result] = await project_readiness(db, manager.id, project.id, today=TODAY)
    assert result.readiness is Readiness.READY
    assert result.userCertificates == []
