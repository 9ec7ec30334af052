import pytest

from app.core import groups
from app.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.grup_canvi import GrupCanvi
from app.models.grup_conflicte import GrupConflicte
from app.models.notification import Notification
from app.models.persona import Persona


def add_person(db, tree, nom, cognom, birth=None):
    p = Persona(
        arbre_id=tree.id,
        owner_user_id=tree.owner_user_id,
        nom=nom,
        cognom1=cognom,
        data_naixement=birth,
        status="active",
    )
    db.add(p)
    db.commit()
    return p


@pytest.fixture()
def group_setup(db, make_user):
    owner = make_user(email="owner@example.com", display_name="Owner")
    member = make_user(email="member@example.com", display_name="Member")
    grup = groups.create_group(db, owner.id, "Cosins Soler", "shared research")
    groups.invite_member(db, owner.id, grup.id, "Member@Example.com")
    groups.accept_invite(db, member.id, grup.id)
    return owner, member, grup


# ---------------------- membership ----------------------

def test_create_group_makes_owner(db, make_user):
    user = make_user()
    grup = groups.create_group(db, user.id, "  Family  ")
    member = groups.get_member(db, grup.id, user.id)
    assert grup.nom == "Family"
    assert (member.role, member.status) == ("owner", "active")

    with pytest.raises(ValidationError):
        groups.create_group(db, user.id, "   ")


def test_invite_accept_and_duplicate_invite(db, group_setup):
    owner, member, grup = group_setup
    row = groups.get_member(db, grup.id, member.id)
    assert (row.role, row.status) == ("member", "active")
    assert row.joined_at is not None

    with pytest.raises(ConflictError):
        groups.invite_member(db, owner.id, grup.id, "member@example.com")
    with pytest.raises(NotFoundError):
        groups.invite_member(db, owner.id, grup.id, "nobody@example.com")


def test_members_cannot_invite(db, group_setup, make_user):
    _, member, grup = group_setup
    make_user(email="third@example.com")
    with pytest.raises(ForbiddenError):
        groups.invite_member(db, member.id, grup.id, "third@example.com")


def test_declined_invite_hides_group(db, group_setup, make_user):
    owner, _, grup = group_setup
    outsider = make_user(email="out@example.com")
    groups.invite_member(db, owner.id, grup.id, "out@example.com", role="viewer")
    groups.decline_invite(db, outsider.id, grup.id)

    with pytest.raises(NotFoundError):
        groups.load_access(db, outsider.id, grup.id)
    with pytest.raises(NotFoundError):
        groups.accept_invite(db, outsider.id, grup.id)


def test_role_changes_and_ownership_transfer(db, group_setup):
    owner, member, grup = group_setup

    groups.change_member_role(db, owner.id, grup.id, member.id, "admin")
    with pytest.raises(ForbiddenError):
        groups.change_member_role(db, member.id, grup.id, owner.id, "member")
    with pytest.raises(ValidationError):
        groups.change_member_role(db, owner.id, grup.id, member.id, "superuser")

    groups.change_member_role(db, owner.id, grup.id, member.id, "owner")
    db.refresh(grup)
    assert grup.owner_user_id == member.id
    assert groups.get_member(db, grup.id, owner.id).role == "admin"


def test_owner_cannot_be_removed(db, group_setup):
    owner, member, grup = group_setup
    groups.change_member_role(db, owner.id, grup.id, member.id, "admin")
    with pytest.raises(ForbiddenError):
        groups.remove_member(db, member.id, grup.id, owner.id)
    with pytest.raises(ValidationError):
        groups.remove_member(db, owner.id, grup.id, owner.id)

    groups.remove_member(db, owner.id, grup.id, member.id)
    assert [m["user_id"] for m in groups.members_view(db, grup.id)] == [owner.id]


# ---------------------- trees + conflicts ----------------------

def test_duplicate_people_across_trees_raise_one_conflict(db, group_setup, make_tree):
    owner, member, grup = group_setup
    t1 = make_tree(owner, "T1")
    t2 = make_tree(member, "T2")
    add_person(db, t1, "Maria", "Soler", "3 MAR 1905")
    add_person(db, t2, "Maria", "Soler", "1905")
    add_person(db, t2, "Pere", "Soler", "1907")

    groups.link_tree(db, owner.id, grup.id, t1.id)
    groups.link_tree(db, member.id, grup.id, t2.id)

    rows = db.query(GrupConflicte).filter(GrupConflicte.grup_id == grup.id).all()
    assert [c.summary for c in rows] == ["Possible duplicat: maria soler 1905"]
    assert groups.rebuild_conflicts(db, grup.id) == 0

    # both active members are told once
    assert db.query(Notification).filter(Notification.group_id == grup.id).count() == 2


def test_resolved_conflict_is_not_recreated(db, group_setup, make_tree):
    owner, member, grup = group_setup
    t1 = make_tree(owner)
    t2 = make_tree(member)
    add_person(db, t1, "Anna", "Vila")
    add_person(db, t2, "Anna", "Vila")
    groups.link_tree(db, owner.id, grup.id, t1.id)
    groups.link_tree(db, member.id, grup.id, t2.id)

    conflict = groups.conflicts_view(db, grup.id, "pending")[0]
    assert conflict.summary == "Possible duplicat: anna vila"
    with pytest.raises(ForbiddenError):
        groups.resolve_conflict(db, member.id, grup.id, conflict.id)
    groups.resolve_conflict(db, owner.id, grup.id, conflict.id)

    assert groups.rebuild_conflicts_for(db, owner.id, grup.id) == 0
    assert groups.conflicts_view(db, grup.id, "pending") == []


def test_only_tree_owner_can_link(db, group_setup, make_tree):
    owner, member, grup = group_setup
    tree = make_tree(owner)
    with pytest.raises(NotFoundError):
        groups.link_tree(db, member.id, grup.id, tree.id)


def test_unlink_by_tree_owner_and_views(db, group_setup, make_tree):
    owner, member, grup = group_setup
    tree = make_tree(member, "Branca")
    groups.link_tree(db, member.id, grup.id, tree.id)
    assert groups.trees_view(db, grup.id) == [{
        "arbre_id": tree.id,
        "name": "Branca",
        "owner_id": member.id,
        "owner_name": "Member",
        "status": "active",
    }]

    groups.unlink_tree(db, member.id, grup.id, tree.id)
    assert groups.trees_view(db, grup.id) == []

    actions = [c["action"] for c in groups.changes_view(db, grup.id)]
    assert actions[:2] == ["tree_unlinked", "tree_linked"]
    assert actions[-1] == "group_created"
    assert [c["action"] for c in groups.changes_view(db, grup.id, action="member_accepted")] == ["member_accepted"]


def test_change_log_only_grows(db, group_setup, make_tree):
    owner, member, grup = group_setup

    def snapshot():
        rows = db.query(GrupCanvi).filter(GrupCanvi.grup_id == grup.id).order_by(GrupCanvi.id).all()
        return [(r.id, r.action, r.actor_id, r.payload_json, r.created_at) for r in rows]

    before = snapshot()
    tree = make_tree(member, "Branca")
    groups.link_tree(db, member.id, grup.id, tree.id)
    groups.change_member_role(db, owner.id, grup.id, member.id, "admin")
    groups.unlink_tree(db, member.id, grup.id, tree.id)
    after = snapshot()

    assert len(after) > len(before)
    assert after[:len(before)] == before
    stamps = [row[4] for row in after]
    assert stamps == sorted(stamps)
