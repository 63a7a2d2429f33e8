from datetime import timedelta

import pytest
from fastapi import HTTPException

from trainportal import security
from trainportal.apps.accounts import models as account_models


def test_password_hash_roundtrip():
    hashed = security.get_password_hash("correct horse battery staple")
    assert hashed.startswith("$argon2")
    assert security.verify_password("correct horse battery staple", hashed)
    assert not security.verify_password("wrong", hashed)
    assert not security.verify_password("anything", "not-a-hash")
    assert not security.verify_password("", hashed)


def test_token_resolves_current_user(db_session, admin_user):
    token = security.create_access_token(data={"sub": admin_user.id, "role": admin_user.role.value})
    user = security.get_current_user(token=token, db=db_session)
    assert user.id == admin_user.id


def test_expired_token_is_rejected(db_session, admin_user):
    token = security.create_access_token(data={"sub": admin_user.id}, expires_delta=timedelta(minutes=-1))
    with pytest.raises(HTTPException) as excinfo:
        security.get_current_user(token=token, db=db_session)
    assert excinfo.value.status_code == 401


def test_token_for_unknown_user_is_rejected(db_session):
    token = security.create_access_token(data={"sub": "missing-user"})
    with pytest.raises(HTTPException) as excinfo:
        security.get_current_user(token=token, db=db_session)
    assert excinfo.value.status_code == 401


def test_inactive_user_is_rejected(admin_user):
    admin_user.is_active = False
    with pytest.raises(HTTPException) as excinfo:
        security.get_current_active_user(current_user=admin_user)
    assert excinfo.value.status_code == 400


def test_client_user_is_not_admin_and_is_scoped(db_session, client):
    user = account_models.User(
        email="referent@acme.example",
        role=account_models.AccountRole.CLIENT,
        client_id=client.id,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()

    with pytest.raises(HTTPException) as excinfo:
        security.require_admin(current_user=user)
    assert excinfo.value.status_code == 403

    security.ensure_client_scope(user, client.id)
    with pytest.raises(HTTPException) as excinfo:
        security.ensure_client_scope(user, "another-client")
    assert excinfo.value.status_code == 404


def test_admin_passes_every_scope(admin_user):
    assert security.require_admin(current_user=admin_user) is admin_user
    security.ensure_client_scope(admin_user, "any-client")
