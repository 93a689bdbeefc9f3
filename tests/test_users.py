import pytest
from werkzeug.security import check_password_hash

from app.bizadmin.errors import BadRequest, Conflict, NotFound
from app.bizadmin.models import Audit, AuditAction, Role, User, UserRole
from app.bizadmin.modules.users.service import (
    create_user,
    deactivate_users,
    find_all_users,
    find_user,
    generate_password,
    reactivate_user,
    reactivate_users,
    remove_user,
    send_new_password,
    update_password_temp,
    update_user,
)
from app.bizadmin.notifications import user_welcome
from conftest import login, make_role, make_user


def _super_admin_role_id(s) -> int:
    return s.query(Role).filter(Role.name == "SUPER_ADMIN").one().id


@pytest.fixture()
def supervisor(s, admin):
    return make_role(s, admin, "Supervisor", [("CLT", "READ"), ("CLT", "CREATE")])


def test_create_user_links_role_audits_and_notifies(s, admin, supervisor, mailbox):
    res = create_user(
        s,
        {"name": "Ana Torres", "email": "Ana@Example.com ", "password": "temp-1234", "roles": [supervisor]},
        admin,
    )
    assert res["statusCode"] == 201
    data = res["data"]
    assert data["email"] == "ana@example.com"
    assert data["mustChangePassword"] is True
    assert [r["id"] for r in data["roles"]] == [supervisor]

    assert s.query(UserRole).filter(UserRole.user_id == data["id"]).count() == 1
    audits = s.query(Audit).filter(Audit.entity_type == "user", Audit.entity_id == str(data["id"])).all()
    assert len(audits) == 1
    assert audits[0].action == AuditAction.CREATE
    assert audits[0].performed_by_id == admin.id

    user = s.get(User, data["id"])
    assert check_password_hash(user.password_hash, "temp-1234")

    assert len(mailbox) == 1
    event, payload = mailbox[0]
    assert event == "user.welcome-admin-first"
    assert payload["name"] == "ANA TORRES"
    assert payload["password"] == "temp-1234"
    assert payload["web_admin"] == "http://admin.test"


def test_create_user_generates_password_when_missing(s, admin, supervisor, mailbox):
    res = create_user(s, {"name": "Gen", "email": "gen@example.com", "roles": [supervisor]}, admin)
    sent_password = mailbox[0][1]["password"]
    assert len(sent_password) == 10
    user = s.get(User, res["data"]["id"])
    assert check_password_hash(user.password_hash, sent_password)


def test_create_user_rejects_bad_roles(s, admin, supervisor, mailbox):
    with pytest.raises(BadRequest, match="Roles is required"):
        create_user(s, {"name": "X", "email": "x@example.com", "roles": []}, admin)
    with pytest.raises(BadRequest):
        create_user(s, {"name": "X", "email": "x@example.com", "roles": [_super_admin_role_id(s)]}, admin)
    with pytest.raises(BadRequest):
        create_user(s, {"name": "X", "email": "x@example.com", "roles": [987654]}, admin)
    assert s.query(User).filter(User.email == "x@example.com").count() == 0
    assert mailbox == []


def test_create_user_email_rules(s, admin, supervisor, mailbox):
    user_id = make_user(s, admin, [supervisor], "dup@example.com")
    with pytest.raises(BadRequest, match="Email already exists"):
        make_user(s, admin, [supervisor], "dup@example.com")

    remove_user(s, user_id, admin)
    with pytest.raises(Conflict) as exc:
        make_user(s, admin, [supervisor], "dup@example.com")
    assert exc.value.data == {"id": user_id}
    assert exc.value.to_envelope()["statusCode"] == 409


def test_failed_notification_rolls_back_creation(s, admin, supervisor):
    def _failing(sender, **payload):
        return False

    with user_welcome.connected_to(_failing):
        with pytest.raises(BadRequest, match="Failed to send email"):
            make_user(s, admin, [supervisor], "nomail@example.com")

    # no receiver at all is a failed delivery too
    with pytest.raises(BadRequest, match="Failed to send email"):
        make_user(s, admin, [supervisor], "nomail@example.com")

    assert s.query(User).filter(User.email == "nomail@example.com").count() == 0
    assert s.query(Audit).filter(Audit.entity_type == "user").count() == 0


def test_update_user_diffs_roles(s, admin, supervisor, mailbox):
    other = make_role(s, admin, "Reporter", [("RPT", "READ")])
    user_id = make_user(s, admin, [supervisor], "diff@example.com")

    res = update_user(s, user_id, {"name": "Renamed", "roles": [other]}, admin)
    assert res["data"]["name"] == "Renamed"
    assert [r["id"] for r in res["data"]["roles"]] == [other]
    s.expire_all()
    assert {l.role_id for l in s.query(UserRole).filter(UserRole.user_id == user_id)} == {other}

    with pytest.raises(BadRequest):
        update_user(s, user_id, {"roles": [other, _super_admin_role_id(s)]}, admin)
    with pytest.raises(NotFound):
        update_user(s, 55555, {"name": "Ghost"}, admin)

    updates = s.query(Audit).filter(
        Audit.entity_type == "user", Audit.entity_id == str(user_id), Audit.action == AuditAction.UPDATE
    )
    assert updates.count() == 1


def test_remove_user_rules(s, admin, supervisor, mailbox):
    with pytest.raises(BadRequest, match="yourself"):
        remove_user(s, admin.id, admin)

    user_id = make_user(s, admin, [supervisor], "bye@example.com")
    res = remove_user(s, user_id, admin)
    assert res["data"]["isActive"] is False
    s.expire_all()
    assert all(not l.is_active for l in s.query(UserRole).filter(UserRole.user_id == user_id))

    with pytest.raises(NotFound):
        remove_user(s, user_id, admin)


def test_deactivate_rejects_actor_and_super_admin(s, admin, supervisor, mailbox):
    user_id = make_user(s, admin, [supervisor], "bulk@example.com")
    with pytest.raises(BadRequest, match="yourself"):
        deactivate_users(s, [user_id, admin.id], admin)
    with pytest.raises(NotFound):
        deactivate_users(s, [424242], admin)
    assert s.get(User, user_id).is_active is True


def test_deactivate_hard_deletes_users_without_history(s, admin, supervisor, mailbox):
    user_id = make_user(s, admin, [supervisor], "fresh@example.com")

    deactivate_users(s, [user_id], admin)

    s.expire_all()
    assert s.get(User, user_id) is None
    assert s.query(UserRole).filter(UserRole.user_id == user_id).count() == 0
    with pytest.raises(NotFound):
        find_user(s, user_id)
    audit = (
        s.query(Audit)
        .filter(Audit.entity_type == "user", Audit.action == AuditAction.DELETE)
        .one()
    )
    assert audit.entity_id == str(user_id)
    assert audit.performed_by_id == admin.id


def test_deactivate_soft_deletes_users_with_history(s, admin, supervisor, mailbox):
    worker_id = make_user(s, admin, [supervisor], "worker@example.com")
    worker = s.get(User, worker_id)
    # the worker performs an audited action of their own
    make_role(s, worker, "Worker made", [("CLT", "READ")])

    deactivate_users(s, [worker_id], admin)

    s.expire_all()
    data = find_user(s, worker_id)["data"]
    assert data["isActive"] is False
    assert all(not l.is_active for l in s.query(UserRole).filter(UserRole.user_id == worker_id))


def test_reactivate_user(s, admin, supervisor, mailbox):
    user_id = make_user(s, admin, [supervisor], "back@example.com")
    with pytest.raises(BadRequest, match="already active"):
        reactivate_user(s, user_id, admin)

    remove_user(s, user_id, admin)
    res = reactivate_user(s, user_id, admin)
    assert res["data"]["isActive"] is True
    assert [r["id"] for r in res["data"]["roles"]] == [supervisor]

    with pytest.raises(NotFound):
        reactivate_user(s, 99999, admin)


def test_reactivate_user_conflicts_with_new_holder_of_email(s, admin, supervisor, mailbox):
    old_id = make_user(s, admin, [supervisor], "reuse@example.com")
    remove_user(s, old_id, admin)
    # a new account takes the email while the old one is inactive
    s.add(User(name="New", email="reuse@example.com", password_hash="x"))
    s.commit()

    with pytest.raises(Conflict):
        reactivate_user(s, old_id, admin)


def test_reactivate_users_bulk(s, admin, supervisor, mailbox):
    a = make_user(s, admin, [supervisor], "a@example.com")
    b = make_user(s, admin, [supervisor], "b@example.com")
    remove_user(s, a, admin)
    remove_user(s, b, admin)

    with pytest.raises(BadRequest):
        reactivate_users(s, [a, admin.id], admin)

    res = reactivate_users(s, [a, b], admin)
    assert "data" not in res
    s.expire_all()
    assert s.get(User, a).is_active and s.get(User, b).is_active


def test_find_all_users_visibility(s, admin, supervisor, mailbox):
    active = make_user(s, admin, [supervisor], "on@example.com")
    gone = make_user(s, admin, [supervisor], "off@example.com")
    remove_user(s, gone, admin)

    as_super = {u["id"] for u in find_all_users(s, admin)["data"]}
    assert {active, gone} <= as_super

    viewer = s.get(User, active)
    as_viewer = {u["id"] for u in find_all_users(s, viewer)["data"]}
    assert active in as_viewer
    assert gone not in as_viewer


def test_send_new_password(s, admin, supervisor, mailbox):
    user_id = make_user(s, admin, [supervisor], "reset@example.com")
    update_password_temp(s, user_id, "chosen-pw")
    assert s.get(User, user_id).must_change_password is False

    with pytest.raises(BadRequest, match="own password"):
        send_new_password(s, admin.email, "whatever1", admin)
    with pytest.raises(BadRequest, match="Email not found"):
        send_new_password(s, "ghost@example.com", "whatever1", admin)

    res = send_new_password(s, "reset@example.com", "fresh-pw-1", admin)
    assert res["data"] == "reset@example.com"
    user = s.get(User, user_id)
    assert check_password_hash(user.password_hash, "fresh-pw-1")
    assert user.must_change_password is True
    assert mailbox[-1][0] == "user.new-password"

    remove_user(s, user_id, admin)
    with pytest.raises(BadRequest, match="inactive"):
        send_new_password(s, "reset@example.com", "again-pw-1", admin)


def test_send_new_password_rolls_back_without_delivery(s, admin, supervisor):
    with user_welcome.connected_to(lambda sender, **kw: True):
        user_id = make_user(s, admin, [supervisor], "nodeliver@example.com")
    before = s.get(User, user_id).password_hash

    # nothing listens for user.new-password
    with pytest.raises(BadRequest, match="Failed to send email"):
        send_new_password(s, "nodeliver@example.com", "other-pw-1", admin)

    s.expire_all()
    assert s.get(User, user_id).password_hash == before


def test_generate_password_shape():
    for _ in range(20):
        pwd = generate_password()
        assert len(pwd) == 10
        assert any(c.isupper() for c in pwd)
        assert any(c.islower() for c in pwd)
        assert any(c.isdigit() for c in pwd)
    assert len(generate_password(16)) == 16


def test_users_api(s, client, admin, supervisor, mailbox):
    headers = login(client)

    r = client.post(
        "/api/v1/users",
        headers=headers,
        json={"name": "Api User", "email": "api@example.com", "roles": [supervisor]},
    )
    assert r.status_code == 201
    user_id = r.json["data"]["id"]

    r = client.post(
        "/api/v1/users",
        headers=headers,
        json={"name": "Api User", "email": "sa@example.com", "roles": [_super_admin_role_id(s)]},
    )
    assert r.status_code == 400

    r = client.get("/api/v1/users/generate-password", headers=headers)
    assert len(r.json["data"]["password"]) == 10

    r = client.delete("/api/v1/users/deactivate/all", headers=headers, json={"ids": [user_id, admin.id]})
    assert r.status_code == 400
    assert r.json["message"] == "You cannot deactivate yourself"


def test_empty_roles_list_keeps_links(s, admin, supervisor, mailbox):
    user_id = make_user(s, admin, [supervisor], "keep@example.com")

    res = update_user(s, user_id, {"name": "Kept", "roles": []}, admin)
    assert res["data"]["name"] == "Kept"
    assert [r["id"] for r in res["data"]["roles"]] == [supervisor]

    sa_id = _super_admin_role_id(s)
    update_user(s, admin.id, {"roles": []}, admin)
    s.expire_all()
    assert [l.role_id for l in s.query(UserRole).filter(UserRole.user_id == admin.id)] == [sa_id]


def test_update_cannot_drop_super_admin_link(s, admin, supervisor):
    sa_id = _super_admin_role_id(s)
    with pytest.raises(BadRequest, match="SUPER_ADMIN"):
        update_user(s, admin.id, {"roles": [supervisor]}, admin)

    s.expire_all()
    assert [l.role_id for l in s.query(UserRole).filter(UserRole.user_id == admin.id)] == [sa_id]


def test_welcome_goes_out_after_links_and_audits_exist(s, admin, supervisor):
    seen = []

    def _receiver(sender, **payload):
        user = s.query(User).filter(User.email == payload["email"], User.is_active.is_(True)).one()
        audits = s.query(Audit).filter(Audit.entity_type == "user", Audit.entity_id == str(user.id)).count()
        seen.append((len(user.role_links), audits))
        return True

    with user_welcome.connected_to(_receiver):
        make_user(s, admin, [supervisor], "order@example.com")

    assert seen == [(1, 1)]
