"""
Tests d'intégration API pour les pass : émission, vérification, révocation, expiration.
"""

import uuid
from datetime import datetime
from unittest.mock import patch

from app.exceptions import (
    InvalidVerificationInput,
    MissingVisitor,
    PassNotActive,
    PassNotFound,
    VisitorBlacklisted,
)
from app.schemas.visitor_pass import (
    PassDelivery,
    PassIssueResponse,
    PassResponse,
    PassStats,
    StructuredReference,
    VerificationResponse,
)


# --- Helpers ---

def make_pass_response(**kwargs) -> PassResponse:
    return PassResponse(
        id=kwargs.get("id", uuid.uuid4()),
        pass_number=kwargs.get("pass_number", "VP3001150001"),
        visitor_id=uuid.uuid4(),
        host_id=uuid.uuid4(),
        valid_from=datetime(2030, 1, 15, 9, 30),
        valid_until=datetime(2030, 1, 15, 11, 30),
        status=kwargs.get("status", "active"),
    )


# ============================================================
# POST /api/v1/passes
# ============================================================

def test_emission_succes(client, as_actor):
    as_actor("security")
    with patch("app.routers.passes.pass_service.issue_pass") as mock:
        mock.return_value = PassIssueResponse(
            visitor_pass=make_pass_response(),
            delivery=PassDelivery(document_generated=True, email_sent=True),
        )
        response = client.post("/api/v1/passes", json={"appointment_id": str(uuid.uuid4())})

    assert response.status_code == 201
    data = response.json()
    assert data["pass"]["pass_number"] == "VP3001150001"
    assert data["delivery"]["document_generated"] is True
    assert data["created"] is True


def test_emission_reservee_admin_securite(client, as_actor):
    as_actor("employee")
    response = client.post("/api/v1/passes", json={})
    assert response.status_code == 403


def test_emission_sans_visiteur(client, as_actor):
    as_actor("admin")
    with patch("app.routers.passes.pass_service.issue_pass", side_effect=MissingVisitor()):
        response = client.post("/api/v1/passes", json={"host_id": str(uuid.uuid4())})

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"
    assert response.json()["code"] == "MISSING_VISITOR"


def test_emission_visiteur_blackliste(client, as_actor):
    as_actor("admin")
    with patch("app.routers.passes.pass_service.issue_pass", side_effect=VisitorBlacklisted()):
        response = client.post("/api/v1/passes", json={"visitor_id": str(uuid.uuid4())})

    assert response.status_code == 422
    assert response.json()["code"] == "VISITOR_BLACKLISTED"


# ============================================================
# Vérification
# ============================================================

def test_verification_get_publique(client):
    """Route publique : pas de token requis."""
    with patch("app.routers.passes.verification_service.verify_pass") as mock:
        mock.return_value = VerificationResponse(
            valid=True, visitor_pass=make_pass_response(), visitor_photo="/uploads/a.jpg",
        )
        response = client.get("/api/v1/passes/verify/VP3001150001")

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["pass"]["pass_number"] == "VP3001150001"
    assert data["visitor_photo"] == "/uploads/a.jpg"
    assert mock.call_args.args[1] == "VP3001150001"
    assert mock.call_args.args[2] is None


def test_verification_post_objet_structure(client, as_actor):
    actor = as_actor("security")
    with patch("app.routers.passes.verification_service.verify_pass") as mock:
        mock.return_value = VerificationResponse(valid=True, visitor_pass=make_pass_response())
        response = client.post("/api/v1/passes/verify", json={"value": {"$oid": "abc123"}})

    assert response.status_code == 200
    raw = mock.call_args.args[1]
    assert isinstance(raw, StructuredReference)
    assert raw.oid == "abc123"
    assert mock.call_args.args[2] == actor


def test_verification_post_numero_de_pass(client):
    with patch("app.routers.passes.verification_service.verify_pass") as mock:
        mock.return_value = VerificationResponse(valid=True, visitor_pass=make_pass_response())
        client.post("/api/v1/passes/verify", json={"passNumber": "VP3001150001"})

    assert mock.call_args.args[1] == "VP3001150001"


def test_verification_pass_introuvable(client):
    with patch("app.routers.passes.verification_service.verify_pass", side_effect=PassNotFound()):
        response = client.get("/api/v1/passes/verify/VP0000000000")

    assert response.status_code == 404
    assert response.json() == {
        "valid": False,
        "error": "Pass introuvable.",
        "kind": "NotFoundError",
        "code": "PASS_NOT_FOUND",
    }


def test_verification_pass_revoque(client):
    with patch("app.routers.passes.verification_service.verify_pass", side_effect=PassNotActive("revoked")):
        response = client.get("/api/v1/passes/verify/VP3001150001")

    assert response.status_code == 409
    assert response.json()["valid"] is False
    assert "revoked" in response.json()["error"]


def test_verification_corps_vide(client):
    with patch("app.routers.passes.verification_service.verify_pass",
               side_effect=InvalidVerificationInput()) as mock:
        response = client.post("/api/v1/passes/verify", json={})

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_VERIFICATION_INPUT"
    assert mock.call_args.args[1] is None


# ============================================================
# Consultation / révocation / expiration
# ============================================================

def test_liste_authentification_requise(client):
    assert client.get("/api/v1/passes").status_code == 401


def test_statistiques(client, as_actor):
    as_actor("security")
    with patch("app.routers.passes.pass_service.get_pass_stats") as mock:
        mock.return_value = PassStats(total=3, active=1, expired=1, revoked=1)
        response = client.get("/api/v1/passes/stats")

    assert response.status_code == 200
    assert response.json()["total"] == 3


def test_mon_pass_absent(client, as_actor):
    as_actor("visitor")
    with patch("app.routers.passes.pass_service.get_my_active_pass", return_value=None):
        response = client.get("/api/v1/passes/my")

    assert response.status_code == 200
    assert response.json() is None


def test_revocation_reservee_admin(client, as_actor):
    as_actor("security")
    response = client.patch(f"/api/v1/passes/{uuid.uuid4()}/revoke")
    assert response.status_code == 403


def test_revocation_succes(client, as_actor):
    as_actor("admin")
    with patch("app.routers.passes.pass_service.revoke_pass") as mock:
        mock.return_value = make_pass_response(status="revoked")
        response = client.patch(f"/api/v1/passes/{uuid.uuid4()}/revoke")

    assert response.status_code == 200
    assert response.json()["status"] == "revoked"


def test_expiration_manuelle(client, as_actor):
    as_actor("security")
    with patch("app.routers.passes.pass_service.expire_passes", return_value=4):
        response = client.patch("/api/v1/passes/update-expired")

    assert response.status_code == 200
    assert response.json() == {"modified_count": 4}
