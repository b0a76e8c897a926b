"""
Tests du service d'émission des pass.
Couverture : fenêtre de validité, numéro de pass, résolution visiteur/hôte,
unicité du pass actif par rendez-vous, révocation, expiration, statistiques.
"""

import re
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select

from app.database import utcnow
from app.exceptions import (
    DependencyFailure,
    InvalidTransition,
    MissingHost,
    MissingVisitor,
    NotFoundError,
    PassNotFound,
    ValidationError,
    VisitorBlacklisted,
)
from app.models import Pass
from app.schemas.visitor_pass import PassIssue
from app.security import Actor
from app.services import pass_service
from app.services.pass_service import (
    _persist_pass,
    compute_validity_window,
    expire_passes,
    find_or_issue_for_appointment,
    generate_pass_number,
    get_my_active_pass,
    get_pass,
    get_pass_stats,
    issue_pass,
    list_passes,
    revoke_pass,
)

APPOINTMENT_AT = datetime(2030, 1, 15, 10, 0)


def count_active(db, appointment_id) -> int:
    return db.execute(
        select(func.count()).select_from(Pass)
        .where(Pass.appointment_id == appointment_id, Pass.status == "active")
    ).scalar()


def add_pass(db, visitor, host, status="active", valid_until=None, appointment=None) -> Pass:
    now = utcnow()
    visitor_pass = Pass(
        pass_number=f"VP{uuid.uuid4().hex[:10].upper()}",
        visitor_id=visitor.id,
        host_id=host.id,
        appointment_id=appointment.id if appointment else None,
        valid_from=now - timedelta(hours=2),
        valid_until=valid_until or now + timedelta(hours=2),
        status=status,
    )
    db.add(visitor_pass)
    db.commit()
    return visitor_pass


# --- Fenêtre de validité ---

def test_fenetre_derivee_du_rendez_vous():
    """10:00 pendant 60 min → valide de 09:30 à 11:30."""
    valid_from, valid_until = compute_validity_window(APPOINTMENT_AT, 60)
    assert valid_from == datetime(2030, 1, 15, 9, 30)
    assert valid_until == datetime(2030, 1, 15, 11, 30)


def test_fenetre_duree_par_defaut():
    valid_from, valid_until = compute_validity_window(APPOINTMENT_AT, None)
    assert valid_until - valid_from == timedelta(minutes=120)


def test_fenetre_marge_configurable():
    valid_from, valid_until = compute_validity_window(APPOINTMENT_AT, 45, buffer_minutes=10)
    assert valid_from == datetime(2030, 1, 15, 9, 50)
    assert valid_until == datetime(2030, 1, 15, 10, 55)


# --- Numéro de pass ---

def test_numero_de_pass_format():
    db = MagicMock()
    db.execute.return_value.first.return_value = None

    number = generate_pass_number(db, today=date(2026, 3, 5))

    assert re.fullmatch(r"VP260305\d{4}", number)


def test_numero_de_pass_collision_cinq_chiffres():
    """Numéro déjà pris → une seule régénération, avec 5 chiffres."""
    db = MagicMock()
    db.execute.return_value.first.return_value = (uuid.uuid4(),)

    number = generate_pass_number(db, today=date(2026, 3, 5))

    assert re.fullmatch(r"VP260305\d{5}", number)
    assert db.execute.call_count == 1


# --- Émission ---

def test_emission_depuis_rendez_vous(sqlite_db, make_user, make_visitor, make_appointment):
    host = make_user()
    visitor = make_visitor()
    appointment = make_appointment(host, visitor, when=APPOINTMENT_AT)
    actor = Actor(id=uuid.uuid4(), role="security")

    result = issue_pass(sqlite_db, PassIssue(appointment_id=appointment.id), actor)

    assert result.created is True
    issued = result.visitor_pass
    assert issued.visitor_id == visitor.id
    assert issued.host_id == host.id
    assert issued.issued_by == actor.id
    assert issued.valid_from == datetime(2030, 1, 15, 9, 30)
    assert issued.valid_until == datetime(2030, 1, 15, 11, 30)
    assert issued.status == "active"
    assert issued.qr_code.startswith("data:image/png;base64,")
    assert result.delivery.document_generated is True
    assert Path(issued.pdf_path).is_file()
    # Envois désactivés en test
    assert result.delivery.email_sent is False


def test_emission_reutilise_le_pass_actif(sqlite_db, make_user, make_visitor, make_appointment):
    """Deux émissions pour le même rendez-vous → un seul pass actif."""
    host = make_user()
    appointment = make_appointment(host, make_visitor(), when=APPOINTMENT_AT)

    first = issue_pass(sqlite_db, PassIssue(appointment_id=appointment.id))
    second = issue_pass(sqlite_db, PassIssue(appointment_id=appointment.id))

    assert second.created is False
    assert second.visitor_pass.id == first.visitor_pass.id
    assert count_active(sqlite_db, appointment.id) == 1


def test_emission_fenetre_explicite(sqlite_db, make_user, make_visitor):
    host = make_user()
    visitor = make_visitor()
    start = datetime(2030, 2, 1, 8, 0)

    result = issue_pass(sqlite_db, PassIssue(
        visitor_id=visitor.id,
        host_id=host.id,
        valid_from=start,
        valid_until=start + timedelta(hours=9),
        access_areas=["Hall", "Labo 2"],
    ))

    assert result.visitor_pass.valid_from == start
    assert result.visitor_pass.valid_until == datetime(2030, 2, 1, 17, 0)
    assert result.visitor_pass.access_areas == ["Hall", "Labo 2"]
    assert result.visitor_pass.appointment_id is None


def test_emission_visiteur_du_profil_de_l_acteur(sqlite_db, make_user, make_visitor):
    host = make_user()
    account = make_user(role="visitor", name="Jean Dupont")
    visitor = make_visitor(user_id=account.id)

    result = issue_pass(
        sqlite_db,
        PassIssue(host_id=host.id, valid_until=utcnow() + timedelta(hours=3)),
        Actor(id=account.id, role="visitor"),
    )

    assert result.visitor_pass.visitor_id == visitor.id


def test_emission_sans_visiteur(sqlite_db, make_user):
    host = make_user()
    with pytest.raises(MissingVisitor):
        issue_pass(sqlite_db, PassIssue(host_id=host.id, valid_until=utcnow() + timedelta(hours=1)),
                   Actor(id=uuid.uuid4(), role="security"))


def test_emission_sans_hote(sqlite_db, make_visitor):
    visitor = make_visitor()
    with pytest.raises(MissingHost):
        issue_pass(sqlite_db, PassIssue(visitor_id=visitor.id, valid_until=utcnow() + timedelta(hours=1)))


def test_emission_rendez_vous_introuvable(sqlite_db):
    with pytest.raises(NotFoundError) as exc:
        issue_pass(sqlite_db, PassIssue(appointment_id=uuid.uuid4()))
    assert exc.value.code == "APPOINTMENT_NOT_FOUND"


def test_emission_visiteur_blackliste(sqlite_db, make_user, make_visitor, make_appointment):
    """Visiteur sur liste noire → refus, aucun pass créé."""
    host = make_user()
    appointment = make_appointment(host, make_visitor(is_blacklisted=True), when=APPOINTMENT_AT)

    with pytest.raises(VisitorBlacklisted):
        issue_pass(sqlite_db, PassIssue(appointment_id=appointment.id))

    assert sqlite_db.execute(select(func.count()).select_from(Pass)).scalar() == 0


def test_emission_sans_fenetre_ni_rendez_vous(sqlite_db, make_user, make_visitor):
    with pytest.raises(ValidationError) as exc:
        issue_pass(sqlite_db, PassIssue(visitor_id=make_visitor().id, host_id=make_user().id))
    assert exc.value.code == "INVALID_WINDOW"


def test_emission_fenetre_inversee(sqlite_db, make_user, make_visitor):
    start = datetime(2030, 2, 1, 8, 0)
    with pytest.raises(ValidationError):
        issue_pass(sqlite_db, PassIssue(
            visitor_id=make_visitor().id,
            host_id=make_user().id,
            valid_from=start,
            valid_until=start,
        ))


def test_emission_pdf_en_echec_non_bloquant(sqlite_db, make_user, make_visitor, make_appointment):
    """Échec du badge PDF → pass créé quand même, document_generated=False."""
    appointment = make_appointment(make_user(), make_visitor(), when=APPOINTMENT_AT)

    with patch.object(pass_service.pdf_service, "render_pass_document", side_effect=DependencyFailure("disque plein")):
        result = issue_pass(sqlite_db, PassIssue(appointment_id=appointment.id))

    assert result.created is True
    assert result.delivery.document_generated is False
    assert result.visitor_pass.pdf_path is None


def test_emission_envoie_email_et_sms(sqlite_db, make_user, make_visitor):
    with patch.object(pass_service.email_service, "send_pass_details", return_value=True) as mock_email, \
         patch.object(pass_service.sms_service, "send_sms", return_value=True) as mock_sms:
        result = issue_pass(sqlite_db, PassIssue(
            visitor_id=make_visitor().id,
            host_id=make_user().id,
            valid_until=utcnow() + timedelta(hours=2),
        ))

    assert result.delivery.email_sent is True
    assert result.delivery.sms_sent is True
    mock_email.assert_called_once()
    assert mock_sms.call_args.args[0] == "+32470000000"


def test_course_emission_index_partiel(sqlite_db, make_user, make_visitor, make_appointment):
    """Insertion concurrente : l'index partiel rejette le second pass, le gagnant est retourné."""
    host = make_user()
    visitor = make_visitor()
    appointment = make_appointment(host, visitor, when=APPOINTMENT_AT)
    winner = add_pass(sqlite_db, visitor, host, appointment=appointment)

    visitor_pass, created = _persist_pass(
        sqlite_db,
        visitor_id=visitor.id,
        appointment_id=appointment.id,
        host_id=host.id,
        valid_from=APPOINTMENT_AT,
        valid_until=APPOINTMENT_AT + timedelta(hours=1),
    )

    assert created is False
    assert visitor_pass.id == winner.id
    assert count_active(sqlite_db, appointment.id) == 1


def test_find_or_issue_rendez_vous_invite(sqlite_db, make_user, make_appointment):
    appointment = make_appointment(make_user(), None, when=APPOINTMENT_AT)
    with pytest.raises(MissingVisitor):
        find_or_issue_for_appointment(sqlite_db, appointment)


# --- Révocation / expiration ---

def test_revocation(sqlite_db, make_user, make_visitor):
    visitor_pass = add_pass(sqlite_db, make_visitor(), make_user())

    assert revoke_pass(sqlite_db, visitor_pass.id).status == "revoked"

    with pytest.raises(InvalidTransition):
        revoke_pass(sqlite_db, visitor_pass.id)


def test_revocation_pass_introuvable(sqlite_db):
    with pytest.raises(PassNotFound):
        revoke_pass(sqlite_db, uuid.uuid4())


def test_expiration_des_pass_echus(sqlite_db, make_user, make_visitor):
    host, visitor = make_user(), make_visitor()
    now = utcnow()
    stale = add_pass(sqlite_db, visitor, host, valid_until=now - timedelta(minutes=1))
    current = add_pass(sqlite_db, visitor, host, valid_until=now + timedelta(hours=1))
    revoked = add_pass(sqlite_db, visitor, host, status="revoked", valid_until=now - timedelta(hours=1))

    assert expire_passes(sqlite_db, now) == 1
    assert expire_passes(sqlite_db, now) == 0

    sqlite_db.expire_all()
    assert sqlite_db.get(Pass, stale.id).status == "expired"
    assert sqlite_db.get(Pass, current.id).status == "active"
    assert sqlite_db.get(Pass, revoked.id).status == "revoked"


# --- Consultation ---

def test_statistiques(sqlite_db, make_user, make_visitor):
    host, visitor = make_user(), make_visitor()
    add_pass(sqlite_db, visitor, host)
    add_pass(sqlite_db, visitor, host)
    add_pass(sqlite_db, visitor, host, status="expired")
    add_pass(sqlite_db, visitor, host, status="revoked")

    stats = get_pass_stats(sqlite_db)

    assert (stats.total, stats.active, stats.expired, stats.revoked) == (4, 2, 1, 1)


def test_liste_paginee(sqlite_db, make_user, make_visitor):
    host, visitor = make_user(), make_visitor()
    for _ in range(3):
        add_pass(sqlite_db, visitor, host)
    add_pass(sqlite_db, visitor, host, status="expired")

    result = list_passes(sqlite_db, status="active", page=1, limit=2)

    assert result.total == 3
    assert result.total_pages == 2
    assert result.current_page == 1
    assert len(result.passes) == 2


def test_get_pass_introuvable(sqlite_db):
    with pytest.raises(PassNotFound):
        get_pass(sqlite_db, uuid.uuid4())


def test_mon_pass_actif(sqlite_db, make_user, make_visitor):
    account = make_user(role="visitor")
    visitor = make_visitor(user_id=account.id)
    visitor_pass = add_pass(sqlite_db, visitor, make_user())
    actor = Actor(id=account.id, role="visitor")

    assert get_my_active_pass(sqlite_db, actor).id == visitor_pass.id
    assert get_my_active_pass(sqlite_db, Actor(id=uuid.uuid4(), role="visitor")) is None
