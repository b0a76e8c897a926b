"""
Tests du service de vérification des pass (scan au poste de sécurité).
"""

import json
import uuid
from datetime import datetime

import pytest
from sqlalchemy import func, select

from app.exceptions import (
    InvalidVerificationInput,
    PassNotActive,
    PassNotFound,
    PassOutsideValidWindow,
    VisitorBlacklisted,
)
from app.models import Pass
from app.schemas.visitor_pass import StructuredReference
from app.services.verification_service import (
    normalize_photo_path,
    normalize_verification_input,
    verify_pass,
)

APPOINTMENT_AT = datetime(2030, 1, 15, 10, 0)


def add_pass(db, visitor, host, number="VP3001150001", status="active", appointment=None) -> Pass:
    visitor_pass = Pass(
        pass_number=number,
        visitor_id=visitor.id,
        host_id=host.id,
        appointment_id=appointment.id if appointment else None,
        valid_from=datetime(2030, 1, 15, 9, 30),
        valid_until=datetime(2030, 1, 15, 11, 30),
        status=status,
    )
    db.add(visitor_pass)
    db.commit()
    return visitor_pass


# --- Normalisation de la valeur scannée ---

@pytest.mark.parametrize("raw, expected", [
    ("  VP2601010001 ", "VP2601010001"),
    (12345, "12345"),
    ({"$oid": "abc123"}, "abc123"),
    ({"_id": {"$oid": "abc123"}}, "abc123"),
    ({"_id": "def456"}, "def456"),
    ({"hexString": "0f0f"}, "0f0f"),
    ({"passNumber": "VP2601010002", "visitorName": "Jean"}, "VP2601010002"),
    ('{"passNumber": "VP2601010003", "validFrom": "2026-01-01T09:30:00"}', "VP2601010003"),
    (StructuredReference(appointment_id="a1b2"), "a1b2"),
])
def test_normalisation_valeurs_acceptees(raw, expected):
    assert normalize_verification_input(raw) == expected


def test_normalisation_uuid_en_texte():
    value = uuid.uuid4()
    assert normalize_verification_input(value) == str(value)


@pytest.mark.parametrize("raw", [None, "", "   ", "[object Object]", {}, {"foo": "bar"}, "{pas du json", "{}", True])
def test_normalisation_valeurs_rejetees(raw):
    with pytest.raises(InvalidVerificationInput):
        normalize_verification_input(raw)


def test_normalisation_ne_retourne_jamais_un_repr_de_dict():
    with pytest.raises(InvalidVerificationInput):
        normalize_verification_input({"_id": {"nested": "x"}})


# --- Chemin de la photo ---

@pytest.mark.parametrize("raw, expected", [
    (None, None),
    ("https://cdn.example.com/p.jpg", "https://cdn.example.com/p.jpg"),
    ("visitor-photos/a.jpg", "/uploads/visitor-photos/a.jpg"),
    ("/uploads/a.jpg", "/uploads/a.jpg"),
    ("uploads/a.jpg", "/uploads/a.jpg"),
    ("C:\\photos\\a.jpg", None),
    ("\\\\serveur\\a.jpg", None),
    ("/var/www/a.jpg", None),
    ("/tmp/a.jpg", None),
])
def test_normalisation_photo(raw, expected):
    assert normalize_photo_path(raw) == expected


# --- Vérification ---

def test_verification_par_numero(sqlite_db, make_user, make_visitor):
    visitor = make_visitor(photo="visitor-photos/jean.jpg")
    add_pass(sqlite_db, visitor, make_user())

    result = verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 10, 0))

    assert result.valid is True
    assert result.visitor_pass.pass_number == "VP3001150001"
    assert result.visitor_pass.visitor.name == "Jean Dupont"
    assert result.visitor_photo == "/uploads/visitor-photos/jean.jpg"


def test_verification_borne_superieure_incluse(sqlite_db, make_user, make_visitor):
    add_pass(sqlite_db, make_visitor(), make_user())

    assert verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 11, 30)).valid is True
    assert verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 9, 30)).valid is True

    with pytest.raises(PassOutsideValidWindow):
        verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 11, 30, 1))
    with pytest.raises(PassOutsideValidWindow):
        verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 9, 29, 59))


def test_verification_pass_introuvable(sqlite_db):
    with pytest.raises(PassNotFound):
        verify_pass(sqlite_db, "VP0000000000")


def test_verification_pass_revoque(sqlite_db, make_user, make_visitor):
    add_pass(sqlite_db, make_visitor(), make_user(), status="revoked")

    with pytest.raises(PassNotActive) as exc:
        verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 10, 0))
    assert "revoked" in exc.value.message


def test_verification_statut_avant_fenetre(sqlite_db, make_user, make_visitor):
    """Pass expiré et hors fenêtre → le statut est signalé en premier."""
    add_pass(sqlite_db, make_visitor(), make_user(), status="expired")
    with pytest.raises(PassNotActive):
        verify_pass(sqlite_db, "VP3001150001", now=datetime(2031, 1, 1))


def test_verification_blackliste_apres_emission(sqlite_db, make_user, make_visitor):
    """La liste noire est relue au moment de la vérification."""
    visitor = make_visitor()
    add_pass(sqlite_db, visitor, make_user())
    visitor.is_blacklisted = True
    sqlite_db.commit()

    with pytest.raises(VisitorBlacklisted):
        verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 10, 0))


def test_verification_par_rendez_vous_emet_le_pass(sqlite_db, make_user, make_visitor, make_appointment):
    """Rendez-vous sans pass → pass émis à la vérification ; une seconde vérification le réutilise."""
    appointment = make_appointment(make_user(), make_visitor(), when=APPOINTMENT_AT, status="approved",
                                   visitor_photo="https://cdn.example.com/rdv.jpg")

    first = verify_pass(sqlite_db, str(appointment.id), now=APPOINTMENT_AT)
    second = verify_pass(sqlite_db, {"_id": str(appointment.id)}, now=APPOINTMENT_AT)

    assert first.visitor_pass.id == second.visitor_pass.id
    assert first.visitor_photo == "https://cdn.example.com/rdv.jpg"
    count = sqlite_db.execute(
        select(func.count()).select_from(Pass).where(Pass.appointment_id == appointment.id)
    ).scalar()
    assert count == 1


@pytest.mark.parametrize("status", ["pending", "rejected", "cancelled"])
def test_verification_rendez_vous_non_approuve_sans_emission(
    sqlite_db, make_user, make_visitor, make_appointment, status
):
    """Rendez-vous non approuvé → aucun pass émis, la vérification échoue."""
    appointment = make_appointment(make_user(), make_visitor(), when=APPOINTMENT_AT, status=status)

    with pytest.raises(PassNotFound):
        verify_pass(sqlite_db, str(appointment.id), now=APPOINTMENT_AT)

    count = sqlite_db.execute(
        select(func.count()).select_from(Pass).where(Pass.appointment_id == appointment.id)
    ).scalar()
    assert count == 0


def test_verification_contenu_qr(sqlite_db, make_user, make_visitor):
    add_pass(sqlite_db, make_visitor(), make_user())
    payload = json.dumps({"passNumber": "VP3001150001", "visitorName": "Jean Dupont"})

    assert verify_pass(sqlite_db, payload, now=datetime(2030, 1, 15, 10, 0)).valid is True


def test_verification_ne_modifie_pas_le_pass(sqlite_db, make_user, make_visitor):
    visitor_pass = add_pass(sqlite_db, make_visitor(), make_user())

    verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 10, 0))
    verify_pass(sqlite_db, "VP3001150001", now=datetime(2030, 1, 15, 10, 5))

    sqlite_db.expire_all()
    assert sqlite_db.get(Pass, visitor_pass.id).status == "active"


def test_verification_valeur_invalide(sqlite_db):
    with pytest.raises(InvalidVerificationInput):
        verify_pass(sqlite_db, "[object Object]")
