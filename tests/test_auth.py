"""Authorization gate: authentication, role resolution and capability checks."""
import pytest
from jose import jwt

from campbooking.auth import (
    Capability,
    JWTVerifier,
    Principal,
    authorize,
    bearer_credential,
    check_capability,
    resolve_role,
)
from campbooking.errors import Forbidden, Unauthenticated

from conftest import ADMIN, INSTRUCTOR, OTHER_STUDENT, SECRET, STUDENT, auth, token_for


@pytest.fixture
def verifier():
    return JWTVerifier(SECRET)


def test_bearer_credential_requires_bearer_scheme():
    assert bearer_credential("Bearer abc") == "abc"
    for header in (None, "", "Bearer", "Bearer   ", "Basic abc"):
        with pytest.raises(Unauthenticated):
            bearer_credential(header)


def test_verifier_rejects_wrong_secret_and_missing_email(verifier):
    assert verifier.verify(token_for(STUDENT)) == STUDENT
    with pytest.raises(Unauthenticated):
        verifier.verify(jwt.encode({"email": STUDENT}, "other-secret", algorithm="HS256"))
    with pytest.raises(Unauthenticated):
        verifier.verify(jwt.encode({"sub": STUDENT}, SECRET, algorithm="HS256"))
    with pytest.raises(Unauthenticated):
        verifier.verify("not-a-token")


def test_verifier_without_secret_rejects_everything():
    with pytest.raises(Unauthenticated):
        JWTVerifier("").verify(token_for(STUDENT))


def test_resolve_role_defaults_to_student(session, users):
    assert resolve_role(session, ADMIN) == "admin"
    assert resolve_role(session, INSTRUCTOR) == "instructor"
    # stored NULL role and unknown users never gain anything
    assert resolve_role(session, OTHER_STUDENT) == "student"
    assert resolve_role(session, "stranger@camp.test") == "student"


@pytest.mark.parametrize(
    "role,capability,allowed",
    [
        ("student", Capability.ANY_AUTHENTICATED, True),
        ("student", Capability.ADMIN_ONLY, False),
        ("instructor", Capability.ADMIN_ONLY, False),
        ("admin", Capability.ADMIN_ONLY, True),
        ("student", Capability.INSTRUCTOR_ONLY, False),
        ("admin", Capability.INSTRUCTOR_ONLY, False),
        ("instructor", Capability.INSTRUCTOR_ONLY, True),
        ("student", Capability.STUDENT_ONLY, True),
        ("instructor", Capability.STUDENT_ONLY, False),
        ("admin", Capability.STUDENT_ONLY, False),
    ],
)
def test_check_capability_by_role(role, capability, allowed):
    assert check_capability(Principal("someone@camp.test", role), capability) is allowed


def test_self_or_admin_compares_owner():
    student = Principal(STUDENT, "student")
    assert check_capability(student, Capability.SELF_OR_ADMIN, STUDENT)
    assert not check_capability(student, Capability.SELF_OR_ADMIN, OTHER_STUDENT)
    assert not check_capability(student, Capability.SELF_OR_ADMIN, None)
    assert check_capability(Principal(ADMIN, "admin"), Capability.SELF_OR_ADMIN, STUDENT)


def test_authorize_returns_principal_with_stored_role(session, users, verifier):
    principal = authorize(f"Bearer {token_for(ADMIN)}", verifier, session, [Capability.ADMIN_ONLY])
    assert principal == Principal(ADMIN, "admin")
    with pytest.raises(Forbidden):
        authorize(f"Bearer {token_for(STUDENT)}", verifier, session, [Capability.ADMIN_ONLY])


def test_missing_and_invalid_credentials_are_401(client, users):
    r = client.patch("/users/1/role", json={"role": "admin"})
    assert r.status_code == 401
    assert r.json()["error"] is True
    assert r.headers["WWW-Authenticate"] == "Bearer"
    r = client.patch("/users/1/role", json={"role": "admin"}, headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


@pytest.mark.parametrize("caller", [STUDENT, INSTRUCTOR, OTHER_STUDENT, "stranger@camp.test"])
def test_role_change_forbidden_for_non_admins(client, users, fetch, caller):
    target = users[OTHER_STUDENT]
    r = client.patch(f"/users/{target.id}/role", json={"role": "admin"}, headers=auth(caller))
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden_access"
    assert fetch(type(target), target.id).role is None


def test_role_change_by_admin_takes_effect_on_next_request(client, users):
    target = users[OTHER_STUDENT]
    assert client.get("/users", headers=auth(OTHER_STUDENT)).status_code == 403

    r = client.patch(f"/users/{target.id}/role", json={"role": "admin"}, headers=auth(ADMIN))
    assert r.status_code == 200
    assert r.json()["role"] == "admin"

    r = client.get("/users", headers=auth(OTHER_STUDENT))
    assert r.status_code == 200
    assert {u["email"] for u in r.json()} >= {ADMIN, STUDENT, OTHER_STUDENT}


def test_role_change_validation_and_missing_user(client, users):
    assert client.patch("/users/1/role", json={"role": "superuser"}, headers=auth(ADMIN)).status_code == 422
    r = client.patch("/users/9999/role", json={"role": "instructor"}, headers=auth(ADMIN))
    assert r.status_code == 404
